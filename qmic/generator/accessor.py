"""Accessor style C code generator for QMI packages.

Emits, per message, TLV builder functions (alloc/set/encode) and parser
functions (parse/get/getall/free). Structs that own variable length data
are serialized into a single TLV by a recursive walk over the struct.
"""

import logging
from dataclasses import dataclass

from jinja2 import Environment, PackageLoader

from .errors import GenerationError
from .types import (
    MessageType,
    PackageType,
    PrimitiveType,
    QmiDefinitions,
    QmiMessage,
    QmiMessageMember,
    QmiPackage,
    QmiStruct,
    QmiStructMember,
    RESULT_STRUCT_NAME,
)

logger = logging.getLogger(__name__)

env = Environment(
    loader=PackageLoader("qmic.generator", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)

header_template = env.get_template("accessor.h.j2")
source_template = env.get_template("accessor.c.j2")

C_TYPE_MAP = {
    PrimitiveType.U8: "uint8_t",
    PrimitiveType.U16: "uint16_t",
    PrimitiveType.U32: "uint32_t",
    PrimitiveType.U64: "uint64_t",
    PrimitiveType.I8: "int8_t",
    PrimitiveType.I16: "int16_t",
    PrimitiveType.I32: "int32_t",
    PrimitiveType.I64: "int64_t",
    PrimitiveType.CHAR: "char",
    PrimitiveType.STRING: "char *",
}


def should_emit_builder(pkg_type: PackageType, qm: QmiMessage) -> bool:
    """Check if builder helpers (_alloc(), _encode(), _set()) should be emitted.

    A client builds requests and a server builds responses.
    """
    if pkg_type == PackageType.AGNOSTIC or qm.type == MessageType.INDICATION:
        return True
    if pkg_type == PackageType.CLIENT and qm.type == MessageType.REQUEST:
        return True
    if pkg_type == PackageType.SERVER and qm.type == MessageType.RESPONSE:
        return True
    return False


def should_emit_parser(pkg_type: PackageType, qm: QmiMessage) -> bool:
    # For agnostic packages or indication messages emit everything
    if pkg_type == PackageType.AGNOSTIC or qm.type == MessageType.INDICATION:
        return True
    return not should_emit_builder(pkg_type, qm)


@dataclass(frozen=True)
class PathSegment:
    """One step of an access path: a member name, optionally subscripted."""

    name: str
    index: str | None = None

    def render(self) -> str:
        if self.index is None:
            return self.name
        return f"{self.name}[{self.index}]"


@dataclass(frozen=True)
class AccessPath:
    """Expression reaching a (nested) struct, such as ``val->cards[i].apps[ii]``.

    Paths are immutable; stepping into a member returns a new path, so
    callers never have to restore anything after recursing.
    """

    root: str
    segments: tuple[PathSegment, ...] = ()

    def field(self, name: str) -> "AccessPath":
        return AccessPath(self.root, (*self.segments, PathSegment(name)))

    def element(self, name: str, index: str) -> "AccessPath":
        return AccessPath(self.root, (*self.segments, PathSegment(name, index)))

    def render(self, member: str | None = None) -> str:
        parts = [segment.render() for segment in self.segments]
        if member is not None:
            parts.append(member)
        return f"{self.root}->" + ".".join(parts)


def loop_index(depth: int) -> str:
    """Loop variable for a loop opened at nesting ``depth`` (i, ii, iii, ...)."""
    return "i" * depth


def _check_type(member: QmiStructMember | QmiMessageMember) -> None:
    if member.type == PrimitiveType.STRUCT and member.struct is None:
        raise GenerationError(f"member '{member.name}' is of unsupported type struct without definition")
    if member.type not in C_TYPE_MAP and member.type != PrimitiveType.STRUCT:
        raise GenerationError(f"member '{member.name}' is of unsupported type {member.type}")


class AccessorGenerator:
    """Render the header and source of the accessor style API for one package."""

    def __init__(self, package: QmiPackage, definitions: QmiDefinitions) -> None:
        self.package = package
        self.definitions = definitions

    # Naming

    def struct_type(self, qs: QmiStruct) -> str:
        if qs.name == RESULT_STRUCT_NAME:
            return f"struct {RESULT_STRUCT_NAME}"
        return f"struct {self.package.name}_{qs.name}"

    def elem_type(self, member: QmiStructMember | QmiMessageMember) -> str:
        """C type of one element (or of the scalar) of ``member``."""
        _check_type(member)
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            return self.struct_type(member.struct)
        return C_TYPE_MAP[member.type]

    # Struct declarations

    def struct_declaration(self, qs: QmiStruct) -> str:
        lines = [f"{self.struct_type(qs)} {{"]
        for member in qs.members:
            ctype = self.elem_type(member)
            if member.type == PrimitiveType.STRING:
                lines.append(f"\tchar *{member.name};")
            elif member.is_ptr:
                lines.append(f"\t{ctype} *{member.name};")
            elif member.array_fixed:
                lines.append(f"\t{ctype} {member.name}[{member.array_size}];")
            else:
                lines.append(f"\t{ctype} {member.name};")
        # Structs without owned data travel as opaque blobs, keep them packed
        lines.append("};" if qs.has_ptr_members else "} __attribute__((packed));")
        return "\n".join(lines)

    # Recursive serialization

    def emit_serialise(self, qs: QmiStruct, path: AccessPath, depth: int = 1) -> list[str]:
        """Emit code appending every member of ``qs`` at ``path`` to the buffer."""
        logger.debug("serialise struct %s at %s", qs.name, path.render())
        lines: list[str] = []
        indent = "\t" * depth

        for member in qs.members:
            ctype = self.elem_type(member)

            if member.is_dynamic_array or member.array_fixed:
                idx = loop_index(depth)
                count = path.render(f"{member.name}_n") if member.is_ptr else str(member.array_size)
                elem = path.element(member.name, idx)

                lines.append(f"{indent}for (size_t {idx} = 0; {idx} < {count}; {idx}++) {{")
                if member.type == PrimitiveType.STRUCT:
                    assert member.struct is not None
                    lines.extend(self.emit_serialise(member.struct, elem, depth + 1))
                else:
                    lines.append(f"{indent}\tput_next({ctype}, {member.type.size}, {elem.render()});")
                lines.append(f"{indent}}}")
            elif member.type == PrimitiveType.STRUCT:
                assert member.struct is not None
                lines.extend(self.emit_serialise(member.struct, path.field(member.name), depth))
            elif member.type == PrimitiveType.STRING:
                lines.append(f"{indent}put_string({path.render(member.name)});")
            else:
                lines.append(f"{indent}put_next({ctype}, {member.type.size}, {path.render(member.name)});")

        return lines

    def emit_deserialise(self, qs: QmiStruct, path: AccessPath, depth: int = 1) -> list[str]:
        """Emit code filling every member of ``qs`` at ``path`` from the buffer.

        Every read is bounds checked by get_next()/get_string(), which jump
        to err_wrong_len once the TLV runs out.
        """
        logger.debug("deserialise struct %s at %s", qs.name, path.render())
        lines: list[str] = []
        indent = "\t" * depth

        for member in qs.members:
            ctype = self.elem_type(member)
            target = path.render(member.name)

            if member.is_dynamic_array or member.array_fixed:
                idx = loop_index(depth)
                elem = path.element(member.name, idx)

                if member.is_ptr:
                    count = path.render(f"{member.name}_n")
                    lines.append(f"{indent}{target} = calloc({count}, sizeof({ctype}));")
                    lines.append(f"{indent}if (!{target} && {count})")
                    lines.append(f"{indent}\tgoto err_free;")
                else:
                    count = str(member.array_size)

                lines.append(f"{indent}for (size_t {idx} = 0; {idx} < {count}; {idx}++) {{")
                if member.type == PrimitiveType.STRUCT:
                    assert member.struct is not None
                    lines.extend(self.emit_deserialise(member.struct, elem, depth + 1))
                else:
                    lines.append(f"{indent}\t{elem.render()} = get_next({ctype}, {member.type.size});")
                lines.append(f"{indent}}}")
            elif member.type == PrimitiveType.STRUCT:
                assert member.struct is not None
                lines.extend(self.emit_deserialise(member.struct, path.field(member.name), depth))
            elif member.type == PrimitiveType.STRING:
                lines.append(f"{indent}{target} = get_string();")
            else:
                lines.append(f"{indent}{target} = get_next({ctype}, {member.type.size});")

        return lines

    def emit_free(self, qs: QmiStruct, path: AccessPath, depth: int = 1) -> list[str]:
        """Emit code releasing everything ``qs`` at ``path`` owns."""
        lines: list[str] = []
        indent = "\t" * depth

        for member in qs.members:
            _check_type(member)
            if not member.is_ptr and member.type not in (PrimitiveType.STRUCT, PrimitiveType.STRING):
                continue

            target = path.render(member.name)
            nested = member.struct if member.type == PrimitiveType.STRUCT else None
            owns_nested = nested is not None and nested.has_ptr_members

            if member.is_dynamic_array or member.array_fixed:
                if owns_nested:
                    assert nested is not None
                    idx = loop_index(depth)
                    if member.is_ptr:
                        count = path.render(f"{member.name}_n")
                        cond = f"{target} && {idx} < {count}"
                    else:
                        cond = f"{idx} < {member.array_size}"
                    lines.append(f"{indent}for (size_t {idx} = 0; {cond}; {idx}++) {{")
                    lines.extend(self.emit_free(nested, path.element(member.name, idx), depth + 1))
                    lines.append(f"{indent}}}")
                if member.is_ptr:
                    lines.append(f"{indent}free({target});")
            elif owns_nested:
                assert nested is not None
                lines.extend(self.emit_free(nested, path.field(member.name), depth))
            elif member.type == PrimitiveType.STRING:
                lines.append(f"{indent}free({target});")

        return lines

    # Template helpers

    def serialise(self, qs: QmiStruct) -> str:
        return "\n".join(self.emit_serialise(qs, AccessPath("val")))

    def deserialise(self, qs: QmiStruct) -> str:
        return "\n".join(self.emit_deserialise(qs, AccessPath("out")))

    def free_body(self, qs: QmiStruct) -> str:
        return "\n".join(self.emit_free(qs, AccessPath("val")))

    def member_kind(self, member: QmiMessageMember) -> str:
        """Classify a message member by the accessor shape it gets."""
        _check_type(member)
        if member.is_result:
            return "result"
        if member.is_array:
            return "fixed_array" if member.array_fixed else "array"
        if member.type == PrimitiveType.STRING:
            return "string"
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            return "struct" if member.struct.has_ptr_members else "blob"
        return "scalar"

    def len_size(self, member: QmiMessageMember) -> int:
        """Width in bytes of the element count in front of a variable array."""
        assert member.array_len_type is not None
        return member.array_len_type.size

    def has_count_member(self, qm: QmiMessage, member: QmiMessageMember) -> bool:
        return any(m.name == f"{member.name}_n" for m in qm.members)

    def ptr_structs(self) -> list[QmiStruct]:
        return [qs for qs in self.definitions.structs if qs.has_ptr_members]

    def _context(self) -> dict:
        pkg_type = self.package.type
        return {
            "package": self.package,
            "guard": f"__QMI_{self.package.name.upper()}_H__",
            "consts": self.definitions.consts,
            "structs": self.definitions.structs,
            "ptr_structs": self.ptr_structs(),
            "messages": self.definitions.messages,
            "builder": lambda qm: should_emit_builder(pkg_type, qm),
            "parser": lambda qm: should_emit_parser(pkg_type, qm),
            "struct_declaration": self.struct_declaration,
            "struct_type": self.struct_type,
            "elem_type": self.elem_type,
            "member_kind": self.member_kind,
            "len_size": self.len_size,
            "has_count_member": self.has_count_member,
            "serialise": self.serialise,
            "deserialise": self.deserialise,
            "free_body": self.free_body,
        }

    def render_header(self) -> str:
        return header_template.render(**self._context())

    def render_source(self) -> str:
        return source_template.render(**self._context())


def render_header(package: QmiPackage, definitions: QmiDefinitions) -> str:
    """Render the declarations (qmi_<package>.h) for the accessor API."""
    return AccessorGenerator(package, definitions).render_header()


def render_source(package: QmiPackage, definitions: QmiDefinitions) -> str:
    """Render the definitions (qmi_<package>.c) for the accessor API."""
    return AccessorGenerator(package, definitions).render_source()
