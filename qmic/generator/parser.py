"""Recursive-descent parser for QMI interface definition files."""

import logging
from dataclasses import replace

from .errors import ParseError, ValidationError
from .lexer import Scanner, Token
from .symbols import SymbolTable, TokenId, is_valid_name
from .types import (
    MAX_NAME_LENGTH,
    STRUCT_NEST_MAX,
    MessageType,
    PackageType,
    PrimitiveType,
    QmiConst,
    QmiDefinitions,
    QmiMessage,
    QmiMessageMember,
    QmiPackage,
    QmiStruct,
    QmiStructMember,
    width_type,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_ID = 0xFFFF
MAX_MEMBER_ID = 0xFF


def _owns_data(member: QmiStructMember) -> bool:
    if member.is_ptr or member.type == PrimitiveType.STRING:
        return True
    return member.type == PrimitiveType.STRUCT and member.struct is not None and member.struct.has_ptr_members


def name_structs(struct: QmiStruct, line: int | None = None, parent: str | None = None, field: str | None = None) -> QmiStruct:
    """Return a copy of ``struct`` with every nested struct named.

    Anonymous nested structs are named ``<enclosing struct>_<member>``.
    ``has_ptr_members`` is computed bottom-up on the way back.
    Referenced (previously declared) structs are left untouched.
    """
    name = struct.name if struct.name is not None else f"{parent}_{field}"
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f'struct name "{name[:24]}..." too long', line)

    members = []
    for member in struct.members:
        if member.type == PrimitiveType.STRUCT and not member.is_struct_ref and member.struct is not None:
            member = replace(member, struct=name_structs(member.struct, line, name, member.name))
        members.append(member)

    has_ptr_members = any(_owns_data(m) for m in members)
    logger.debug("struct %s: %d members, has_ptr_members=%s", name, len(members), has_ptr_members)

    return replace(struct, name=name, members=members, has_ptr_members=has_ptr_members)


def defined_structs(struct: QmiStruct) -> list[QmiStruct]:
    """List struct and the structs defined inside it, innermost first."""
    result: list[QmiStruct] = []
    for member in struct.members:
        if member.type == PrimitiveType.STRUCT and not member.is_struct_ref and member.struct is not None:
            result.extend(defined_structs(member.struct))
    result.append(struct)
    return result


def _token_name(token_id: TokenId | str) -> str:
    if isinstance(token_id, TokenId):
        return token_id.value
    return f"'{token_id}'"


class Parser:
    """Build QMI definitions from source text.

    Keeps one token of lookahead in ``current``. Every violation raises
    immediately; there is no recovery.
    """

    def __init__(self, text: str, symbols: SymbolTable | None = None) -> None:
        self.symbols = symbols if symbols is not None else SymbolTable()
        self.scanner = Scanner(text, self.symbols)
        self.package: QmiPackage | None = None
        self.package_type: PackageType | None = None
        self.definitions = QmiDefinitions()
        self.current = self.scanner.next_token()

    # Token helpers

    def accept(self, token_id: TokenId | str) -> Token | None:
        if self.current.id != token_id:
            return None
        token = self.current
        self.current = self.scanner.next_token()
        return token

    def expect(self, token_id: TokenId | str) -> Token:
        token = self.accept(token_id)
        if token is None:
            raise ParseError(f"expected {_token_name(token_id)}", self.current.line)
        return token

    # Top level

    def parse(self) -> tuple[QmiPackage, QmiDefinitions]:
        while not self.accept(TokenId.EOF):
            if self.accept(TokenId.PACKAGE):
                self._parse_package()
            elif self.accept(TokenId.PACKAGE_TYPE):
                self._parse_package_type()
            elif self.accept(TokenId.CONST):
                self._parse_const()
            elif self.accept(TokenId.STRUCT):
                self._parse_struct()
            elif tok := self.accept(TokenId.MESSAGE):
                assert tok.message_type is not None
                self._parse_message(tok.message_type)
            else:
                raise ParseError("unexpected symbol", self.current.line)

        if self.package is None:
            raise ValidationError("package not specified", self.current.line)

        if self.package_type is not None:
            self.package.type = self.package_type

        return self.package, self.definitions

    def _parse_package(self) -> None:
        tok = self.expect(TokenId.ID)
        self.expect(";")

        if self.package is not None:
            raise ValidationError("package may only be specified once", tok.line)
        self.package = QmiPackage(name=tok.text or "")

    def _parse_package_type(self) -> None:
        tok = self.expect(TokenId.ID)
        self.expect(";")

        if self.package_type is not None:
            raise ValidationError("package_type may only be specified once", tok.line)
        try:
            self.package_type = PackageType(tok.text)
        except ValueError:
            raise ValidationError(
                f'unknown package type "{tok.text}", expected server, client or agnostic', tok.line
            ) from None

    def _parse_const(self) -> None:
        if self.current.id == TokenId.NUM and self.current.text in self.symbols:
            raise ValidationError(f'duplicate constant "{self.current.text}"', self.current.line)

        id_tok = self.expect(TokenId.ID)
        self.expect("=")
        num_tok = self.expect(TokenId.NUM)
        self.expect(";")

        name = id_tok.text or ""
        if not is_valid_name(name):
            raise ValidationError(f'invalid constant name "{name}"', id_tok.line)

        self.definitions.consts.append(QmiConst(name=name, value=num_tok.num))
        self.symbols.add_value(name, num_tok.num)

    # Structs

    def _parse_struct(self) -> None:
        if self.current.id == TokenId.TYPE and self.current.type == PrimitiveType.STRUCT:
            raise ValidationError(f'duplicate struct "{self.current.text}"', self.current.line)

        id_tok = self.expect(TokenId.ID)
        struct = self._parse_struct_body(QmiStruct(name=id_tok.text), 1)
        self.expect(";")

        named = name_structs(struct, id_tok.line)
        for qs in defined_structs(named):
            assert qs.name is not None
            if qs.name in self.symbols:
                raise ValidationError(f'duplicate struct "{qs.name}"', id_tok.line)
            if not is_valid_name(qs.name):
                raise ValidationError(f'invalid struct name "{qs.name}"', id_tok.line)
            self.symbols.add_struct(qs)
            self.definitions.structs.append(qs)

    def _parse_struct_body(self, struct: QmiStruct, depth: int) -> QmiStruct:
        self.expect("{")
        while not self.accept("}"):
            self._parse_struct_member(struct, depth)
        return struct

    def _parse_struct_member(self, struct: QmiStruct, depth: int) -> None:
        """Parse one member, either a plain type, a struct reference or a nested definition.

        struct [TYPE] [REFERENCE|DEFINITION]
            REFERENCE: TYPE ['*'] ID [ARRAY] ';'
            DEFINITION: [ID] '{' MEMBERS '}' ['*'] ID [ARRAY] ';'
        """
        if self.accept(TokenId.STRUCT):
            if ref_tok := self.accept(TokenId.TYPE):
                member = self._struct_ref(ref_tok)
            else:
                type_tok = self.accept(TokenId.ID)
                if depth >= STRUCT_NEST_MAX:
                    raise ValidationError(
                        f"Can't have nested structs more than {STRUCT_NEST_MAX} levels deep!",
                        self.current.line,
                    )
                nested = QmiStruct(name=type_tok.text if type_tok else None)
                self._parse_struct_body(nested, depth + 1)
                member = QmiStructMember(name="", type=PrimitiveType.STRUCT, struct=nested)
        else:
            type_tok = self.expect(TokenId.TYPE)
            if type_tok.type == PrimitiveType.STRUCT:
                member = self._struct_ref(type_tok)
            else:
                assert type_tok.type is not None
                member = QmiStructMember(name="", type=type_tok.type)

        if self.accept("*"):
            member.is_ptr = True
        id_tok = self.expect(TokenId.ID)
        member.name = id_tok.text or ""

        self._parse_struct_array(member, id_tok.line)
        self.expect(";")

        self._check_member_name(struct.members, member.name, "struct member", id_tok.line)
        if member.is_dynamic_array:
            self._check_length_member(struct.members, member.name, id_tok.line)

        struct.members.append(member)

    def _struct_ref(self, tok: Token) -> QmiStructMember:
        if tok.type != PrimitiveType.STRUCT or tok.struct is None:
            raise ValidationError(f'"{tok.text}" is not a struct', tok.line)
        return QmiStructMember(name="", type=PrimitiveType.STRUCT, struct=tok.struct, is_struct_ref=True)

    def _parse_struct_array(self, member: QmiStructMember, line: int) -> None:
        """Parse the count width of a variable array, or the length of a fixed one.

        Structs containing variable length arrays are in length-value
        format; the member before the array holds the element count:

            struct file_attrs_t {
                u16 raw_data_n;
                u8 *raw_data(u16);
            };
        """
        if member.is_ptr:
            if member.type == PrimitiveType.STRING:
                raise ValidationError(f'string arrays are not supported (member "{member.name}")', line)
            if not self.accept("("):
                raise ParseError(
                    "Variable length arrays must define the length type, e.g. u8 *my_data(u16);",
                    self.current.line,
                )
            member.array_len_type, member.array_size = self._parse_array_len()
            self.expect(")")
        elif self.accept("["):
            num_tok = self.expect(TokenId.NUM)
            self.expect("]")
            if member.type == PrimitiveType.STRING:
                raise ValidationError(f'string arrays are not supported (member "{member.name}")', line)
            if num_tok.num == 0:
                raise ValidationError(f'fixed array "{member.name}" must have at least one element', line)
            member.array_size = num_tok.num
            member.array_fixed = True
        elif self.current.id == "(":
            raise ParseError("Variable length arrays must be pointers, e.g. u8 *my_data(u16);", self.current.line)

    def _parse_array_len(self) -> tuple[PrimitiveType, int]:
        if num_tok := self.accept(TokenId.NUM):
            if num_tok.num == 0:
                raise ValidationError("array size must be at least one", num_tok.line)
            return width_type(num_tok.num), num_tok.num

        type_tok = self.expect(TokenId.TYPE)
        if type_tok.type is None or not type_tok.type.is_integer:
            raise ValidationError("Array size type must be a basic type", type_tok.line)
        return type_tok.type, (1 << (8 * type_tok.type.size)) - 1

    # Messages

    def _parse_message(self, message_type: MessageType) -> None:
        msg_tok = self.expect(TokenId.ID)
        name = msg_tok.text or ""
        if self.definitions.message(name) is not None:
            raise ValidationError(f'duplicate message "{name}"', msg_tok.line)

        qm = QmiMessage(type=message_type, name=name)

        if self.accept(":"):
            self._parse_sibling(qm)
        else:
            self.expect("{")
            while not self.accept("}"):
                qm.members.append(self._parse_message_member(qm))

        if self.accept("="):
            num_tok = self.expect(TokenId.NUM)
            if num_tok.num > MAX_MESSAGE_ID:
                raise ValidationError(f"message id {num_tok.num:#x} out of range", num_tok.line)
            qm.msg_id = num_tok.num

        self.expect(";")

        self.definitions.messages.append(qm)

    def _parse_sibling(self, qm: QmiMessage) -> None:
        sib_tok = self.expect(TokenId.ID)
        sibling = self.definitions.message(sib_tok.text or "")

        if qm.type != MessageType.INDICATION:
            raise ValidationError("only indications can share the members of a response", sib_tok.line)
        if sibling is None or sibling.type != MessageType.RESPONSE:
            raise ValidationError(f'unknown response "{sib_tok.text}"', sib_tok.line)

        qm.sibling = sibling.name
        qm.members = list(sibling.members)

    def _parse_message_member(self, qm: QmiMessage) -> QmiMessageMember:
        if self.accept(TokenId.REQUIRED):
            required = True
        elif self.accept(TokenId.OPTIONAL):
            required = False
        else:
            raise ParseError("expected required, optional or '}'", self.current.line)

        is_struct = self.accept(TokenId.STRUCT) is not None
        if is_struct and self.current.id == TokenId.ID:
            raise ValidationError(f'unknown struct "{self.current.text}"', self.current.line)

        type_tok = self.expect(TokenId.TYPE)
        if is_struct and type_tok.type != PrimitiveType.STRUCT:
            raise ValidationError(f'"{type_tok.text}" is not a struct', type_tok.line)
        id_tok = self.expect(TokenId.ID)
        assert type_tok.type is not None

        member = QmiMessageMember(
            name=id_tok.text or "",
            type=type_tok.type,
            id=0,
            required=required,
            struct=type_tok.struct,
        )

        if self.accept("["):
            num_tok = self.expect(TokenId.NUM)
            self.expect("]")
            if num_tok.num == 0:
                raise ValidationError(f'fixed array "{member.name}" must have at least one element', num_tok.line)
            member.array_size = num_tok.num
            member.array_fixed = True
        elif self.accept("("):
            member.array_len_type, member.array_size = self._parse_array_len()
            self.expect(")")

        self.expect("=")
        num_tok = self.expect(TokenId.NUM)
        self.expect(";")

        if num_tok.num > MAX_MEMBER_ID:
            raise ValidationError(f"message member number {num_tok.num:#x} out of range", num_tok.line)
        member.id = num_tok.num

        self._check_member_name(qm.members, member.name, "message member", id_tok.line)
        for other in qm.members:
            if other.id == member.id:
                raise ValidationError(f"duplicate message member number {member.id}", num_tok.line)

        if member.is_array:
            if member.type == PrimitiveType.STRING:
                raise ValidationError(f'string arrays are not supported (member "{member.name}")', id_tok.line)
            if member.struct is not None and member.struct.has_ptr_members:
                raise ValidationError(
                    f'arrays of struct "{member.struct.name}" with variable length members are not supported',
                    id_tok.line,
                )
            if not member.array_fixed:
                self._check_length_member(qm.members, member.name, id_tok.line)

        return member

    # Validation helpers

    def _check_member_name(self, members: list, name: str, what: str, line: int) -> None:
        for other in members:
            if other.name == name:
                raise ValidationError(f'duplicate {what} "{name}"', line)

    def _check_length_member(self, members: list, name: str, line: int) -> None:
        """Ensure the member before the variable array ``name`` is ``<name>_n``."""
        if not members:
            raise ValidationError(
                f"dynamic array not preceded by length member: missing 'u8 {name}_n;' before member '{name}'",
                line,
            )

        prev = members[-1]
        if prev.name != f"{name}_n":
            raise ValidationError(f"Member before '{name}' should be '{name}_n', got '{prev.name}'", line)
        if not prev.type.is_integer or prev.array_size or getattr(prev, "is_ptr", False):
            raise ValidationError(f"length member '{prev.name}' must be a scalar integer", line)


def parse(text: str) -> tuple[QmiPackage, QmiDefinitions]:
    """Parse a QMI definition file into its package and definitions."""
    return Parser(text).parse()
