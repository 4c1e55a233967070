"""Wire size calculation for structs and messages."""

from dataclasses import dataclass
from enum import StrEnum, auto

from .types import (
    PrimitiveType,
    QmiDefinitions,
    QmiMessage,
    QmiMessageMember,
    QmiPackage,
    QmiStruct,
    QmiStructMember,
)

# type u8, transaction u16, message id u16, payload length u16
QMI_HEADER_SIZE = 7

# type u8, length u16
TLV_HEADER_SIZE = 3


class SizeKind(StrEnum):
    """Classification of size characteristics."""

    FIXED = auto()  # Min == Max, no variable components
    BOUNDED = auto()  # Variable but has calculable max (e.g., u8 *data(16))
    UNBOUNDED = auto()  # Contains a string


@dataclass(frozen=True)
class SizeInfo:
    """Size information for a type, struct or message."""

    min_size: int
    max_size: int | None  # None means unbounded
    kind: SizeKind

    @property
    def is_fixed(self) -> bool:
        return self.kind == SizeKind.FIXED

    @property
    def is_bounded(self) -> bool:
        return self.kind in (SizeKind.FIXED, SizeKind.BOUNDED)


FIXED_ZERO = SizeInfo(0, 0, SizeKind.FIXED)


def _fixed(size: int) -> SizeInfo:
    return SizeInfo(size, size, SizeKind.FIXED)


def _add(a: SizeInfo, b: SizeInfo) -> SizeInfo:
    max_size = a.max_size + b.max_size if a.max_size is not None and b.max_size is not None else None
    if max_size is None:
        kind = SizeKind.UNBOUNDED
    elif a.is_fixed and b.is_fixed:
        kind = SizeKind.FIXED
    else:
        kind = SizeKind.BOUNDED
    return SizeInfo(a.min_size + b.min_size, max_size, kind)


def _repeat(elem: SizeInfo, min_count: int, max_count: int) -> SizeInfo:
    max_size = elem.max_size * max_count if elem.max_size is not None else None
    if max_size is None:
        kind = SizeKind.UNBOUNDED
    elif elem.is_fixed and min_count == max_count:
        kind = SizeKind.FIXED
    else:
        kind = SizeKind.BOUNDED
    return SizeInfo(elem.min_size * min_count, max_size, kind)


def _optional(size: SizeInfo) -> SizeInfo:
    kind = size.kind if size.kind == SizeKind.UNBOUNDED else SizeKind.BOUNDED
    return SizeInfo(0, size.max_size, kind)


@dataclass(frozen=True)
class StructSizeInfo:
    """Encoded size of a struct."""

    name: str
    size: SizeInfo


@dataclass(frozen=True)
class MessageSizeInfo:
    """Encoded size of a whole message, QMI header included."""

    name: str
    msg_id: int
    size: SizeInfo


@dataclass(frozen=True)
class ProtocolSizeInfo:
    """Size information for an entire package."""

    package: str
    structs: dict[str, StructSizeInfo]
    messages: dict[str, MessageSizeInfo]

    min_message_size: int
    max_message_size: int | None  # None if any message is unbounded


class SizeCalculator:
    """Calculate wire sizes for the structs and messages of a package."""

    def __init__(self, package: QmiPackage, definitions: QmiDefinitions):
        self.package = package
        self.definitions = definitions
        self._cache: dict[str, SizeInfo] = {}

    def calc_primitive_size(self, t: PrimitiveType) -> SizeInfo:
        """Calculate size for a primitive type inside a struct."""
        if t.is_integer:
            return _fixed(t.size)
        if t == PrimitiveType.STRING:
            # NUL-terminated, at least the terminator
            return SizeInfo(1, None, SizeKind.UNBOUNDED)
        raise ValueError(f"Unknown primitive type: {t.value}")

    def calc_member_size(self, member: QmiStructMember) -> SizeInfo:
        """Calculate size for a struct member (handles arrays)."""
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            elem = self.calc_struct_size(member.struct)
        else:
            elem = self.calc_primitive_size(member.type)

        if member.is_dynamic_array:
            # Counted by the preceding _n member, no prefix of its own
            return _repeat(elem, 0, member.array_size)
        if member.array_fixed:
            return _repeat(elem, member.array_size, member.array_size)
        return elem

    def calc_struct_size(self, qs: QmiStruct) -> SizeInfo:
        """Calculate size for a struct (with caching)."""
        assert qs.name is not None
        if qs.name in self._cache:
            return self._cache[qs.name]

        total = FIXED_ZERO
        for member in qs.members:
            total = _add(total, self.calc_member_size(member))

        self._cache[qs.name] = total
        return total

    def calc_tlv_value_size(self, member: QmiMessageMember) -> SizeInfo:
        """Calculate size of the value of one message member TLV."""
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            elem = self.calc_struct_size(member.struct)
        elif member.type == PrimitiveType.STRING:
            # Raw bytes, no terminator required
            return SizeInfo(0, None, SizeKind.UNBOUNDED)
        else:
            elem = _fixed(member.type.size)

        if not member.is_array:
            return elem
        if member.array_fixed:
            return _repeat(elem, member.array_size, member.array_size)

        assert member.array_len_type is not None
        return _add(_fixed(member.array_len_type.size), _repeat(elem, 0, member.array_size))

    def calc_message_size(self, qm: QmiMessage) -> MessageSizeInfo:
        total = _fixed(QMI_HEADER_SIZE)
        for member in qm.members:
            tlv = _add(_fixed(TLV_HEADER_SIZE), self.calc_tlv_value_size(member))
            total = _add(total, tlv if member.required else _optional(tlv))
        return MessageSizeInfo(qm.name, qm.msg_id, total)

    def calc_protocol_info(self) -> ProtocolSizeInfo:
        """Calculate complete package size information."""
        struct_infos = {}
        for qs in self.definitions.structs:
            assert qs.name is not None
            struct_infos[qs.name] = StructSizeInfo(qs.name, self.calc_struct_size(qs))

        message_infos = {qm.name: self.calc_message_size(qm) for qm in self.definitions.messages}

        if message_infos:
            min_msg = min(m.size.min_size for m in message_infos.values())
            max_sizes = [m.size.max_size for m in message_infos.values()]
            if all(m is not None for m in max_sizes):
                max_msg: int | None = max(m for m in max_sizes if m is not None)
            else:
                max_msg = None
        else:
            min_msg = 0
            max_msg = 0

        return ProtocolSizeInfo(
            package=self.package.name,
            structs=struct_infos,
            messages=message_infos,
            min_message_size=min_msg,
            max_message_size=max_msg,
        )


def calculate_sizes(package: QmiPackage, definitions: QmiDefinitions) -> ProtocolSizeInfo:
    """Calculate size information for a package definition."""
    calc = SizeCalculator(package, definitions)
    return calc.calc_protocol_info()
