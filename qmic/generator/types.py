"""Intermediate representation for parsed QMI interface definitions."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum, StrEnum

from dataclasses_json import DataClassJsonMixin

# Longest identifier (keyword, type or synthesized struct name) accepted
MAX_NAME_LENGTH = 128

# Deepest allowed chain of nested struct bodies, top-level body included
STRUCT_NEST_MAX = 32

RESULT_STRUCT_NAME = "qmi_response_type_v01"


class PrimitiveType(Enum):
    """A member type. ``STRUCT`` members carry a ``QmiStruct`` as well."""

    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    CHAR = "char"
    STRING = "string"
    STRUCT = "struct"

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_SIZES

    @property
    def size(self) -> int:
        """Fixed wire width in bytes; zero for strings and structs."""
        return INTEGER_SIZES.get(self, 0)


INTEGER_SIZES: dict[PrimitiveType, int] = {
    PrimitiveType.U8: 1,
    PrimitiveType.U16: 2,
    PrimitiveType.U32: 4,
    PrimitiveType.U64: 8,
    PrimitiveType.I8: 1,
    PrimitiveType.I16: 2,
    PrimitiveType.I32: 4,
    PrimitiveType.I64: 8,
    PrimitiveType.CHAR: 1,
}


class PackageType(StrEnum):
    """Which side of the protocol the generated code is built for."""

    SERVER = "server"
    CLIENT = "client"
    AGNOSTIC = "agnostic"


class MessageType(IntEnum):
    """Message direction, valued as the QMI header type field."""

    REQUEST = 0
    RESPONSE = 2
    INDICATION = 4


@dataclass
class QmiPackage(DataClassJsonMixin):
    """Represents the package statement(s) of a definition file."""

    name: str
    type: PackageType = PackageType.AGNOSTIC


@dataclass
class QmiConst(DataClassJsonMixin):
    """Represents a named numeric constant."""

    name: str
    value: int


@dataclass
class QmiStructMember(DataClassJsonMixin):
    """Represents a member of a struct.

    For arrays:
    - is_ptr=True: variable length array counted by the preceding
      ``<name>_n`` member, ``array_len_type`` gives the count width
    - array_size=N with array_fixed=True: fixed array of N elements
    """

    name: str
    type: PrimitiveType
    struct: "QmiStruct | None" = None
    is_ptr: bool = False
    is_struct_ref: bool = False
    array_size: int = 0
    array_fixed: bool = False
    array_len_type: PrimitiveType | None = None

    @property
    def is_dynamic_array(self) -> bool:
        """Owned, counted array (strings are pointers but not arrays)."""
        return self.is_ptr and self.type != PrimitiveType.STRING


@dataclass
class QmiStruct(DataClassJsonMixin):
    """Represents a struct type definition.

    ``name`` is None for an anonymous nested struct until the naming pass
    has run over its enclosing top-level struct.
    """

    name: str | None
    members: list[QmiStructMember] = field(default_factory=list)
    has_ptr_members: bool = False

    def member(self, name: str) -> QmiStructMember | None:
        for member in self.members:
            if member.name == name:
                return member
        return None


@dataclass
class QmiMessageMember(DataClassJsonMixin):
    """Represents a TLV member of a message.

    For arrays:
    - array_size=0: scalar
    - array_fixed=True: exactly array_size elements, no count prefix
    - array_fixed=False: up to array_size elements behind a count prefix of
      ``array_len_type`` width
    """

    name: str
    type: PrimitiveType
    id: int
    required: bool
    struct: QmiStruct | None = None
    array_size: int = 0
    array_fixed: bool = False
    array_len_type: PrimitiveType | None = None

    @property
    def is_array(self) -> bool:
        return self.array_size > 0

    @property
    def is_result(self) -> bool:
        return self.struct is not None and self.struct.name == RESULT_STRUCT_NAME


@dataclass
class QmiMessage(DataClassJsonMixin):
    """Represents a request, response or indication."""

    type: MessageType
    name: str
    msg_id: int = 0
    members: list[QmiMessageMember] = field(default_factory=list)
    sibling: str | None = None


@dataclass
class QmiDefinitions(DataClassJsonMixin):
    """Everything declared in one definition file, in declaration order.

    ``structs`` lists nested structs before the struct that encloses them.
    """

    consts: list[QmiConst] = field(default_factory=list)
    structs: list[QmiStruct] = field(default_factory=list)
    messages: list[QmiMessage] = field(default_factory=list)

    def struct(self, name: str) -> QmiStruct | None:
        for qs in self.structs:
            if qs.name == name:
                return qs
        return None

    def message(self, name: str) -> QmiMessage | None:
        for qm in self.messages:
            if qm.name == name:
                return qm
        return None


def result_struct() -> QmiStruct:
    """Return the predeclared two-field result struct every package can use."""
    return QmiStruct(
        name=RESULT_STRUCT_NAME,
        members=[
            QmiStructMember(name="result", type=PrimitiveType.U16),
            QmiStructMember(name="error", type=PrimitiveType.U16),
        ],
    )


def width_type(count: int) -> PrimitiveType:
    """Smallest unsigned type able to hold an element count up to ``count``."""
    return PrimitiveType.U8 if count < 256 else PrimitiveType.U16
