"""Encode and decode QMI messages described by parsed definitions.

Produces the same bytes as the generated accessor functions, so it can
drive a peer or check captured traffic without compiling any C.
"""

import struct
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..generator.sizes import SizeCalculator
from ..generator.types import (
    PrimitiveType,
    QmiDefinitions,
    QmiMessage,
    QmiMessageMember,
    QmiPackage,
    QmiStruct,
    QmiStructMember,
)
from .tlv import QmiTlv, TlvError

# Map primitive types to struct format characters
FORMAT_MAP = {
    PrimitiveType.U8: "B",
    PrimitiveType.U16: "H",
    PrimitiveType.U32: "I",
    PrimitiveType.U64: "Q",
    PrimitiveType.I8: "b",
    PrimitiveType.I16: "h",
    PrimitiveType.I32: "i",
    PrimitiveType.I64: "q",
    PrimitiveType.CHAR: "B",
}

STRING_ENCODING = "latin-1"


class SerializationError(RuntimeError):
    """Raised when serialization or deserialization fails."""


def _truncated(needed: int, available: int) -> SerializationError:
    return SerializationError(f"expected at least {needed} bytes but got {available}")


def _pack_primitive(t: PrimitiveType, value: Any, name: str) -> bytes:
    try:
        return struct.pack(f"<{FORMAT_MAP[t]}", value)
    except struct.error as e:
        raise SerializationError(f"member '{name}': {e}") from None


def _unpack_primitive(t: PrimitiveType, data: bytes, offset: int) -> tuple[int, int]:
    size = t.size
    if offset + size > len(data):
        raise _truncated(offset + size, len(data))
    (value,) = struct.unpack_from(f"<{FORMAT_MAP[t]}", data, offset)
    return value, size


def _encode_string(value: str | bytes, name: str) -> bytes:
    if isinstance(value, bytes):
        return value
    try:
        return value.encode(STRING_ENCODING)
    except UnicodeEncodeError:
        raise SerializationError(f"member '{name}': string is not {STRING_ENCODING} encodable") from None


def _with_counts(members: list, values: Mapping[str, Any], is_counted) -> dict[str, Any]:
    """Fill in missing ``<name>_n`` values from the length of their arrays."""
    result = dict(values)
    for member in members:
        if not is_counted(member) or member.name not in result:
            continue
        count = len(result[member.name])
        count_name = f"{member.name}_n"
        if count_name not in result:
            result[count_name] = count
        elif result[count_name] != count:
            raise SerializationError(
                f"member '{count_name}' is {result[count_name]} but '{member.name}' has {count} elements"
            )
    return result


def _lookup(values: Mapping[str, Any], name: str) -> Any:
    try:
        return values[name]
    except KeyError:
        raise SerializationError(f"missing value for member '{name}'") from None


def pack_struct(qs: QmiStruct, values: Mapping[str, Any]) -> bytes:
    """Serialize a struct: members in order, arrays counted by their ``_n`` member."""
    values = _with_counts(qs.members, values, lambda m: m.is_dynamic_array)
    buf = bytearray()

    for member in qs.members:
        value = _lookup(values, member.name)

        if member.is_dynamic_array or member.array_fixed:
            count = values[f"{member.name}_n"] if member.is_ptr else member.array_size
            if len(value) != count:
                raise SerializationError(f"member '{member.name}' needs {count} elements, got {len(value)}")
            if member.is_ptr and count > member.array_size:
                raise SerializationError(
                    f"member '{member.name}' holds at most {member.array_size} elements, got {count}"
                )
            for item in value:
                buf.extend(_pack_element(member, item))
        else:
            buf.extend(_pack_element(member, value))

    return bytes(buf)


def _pack_element(member: QmiStructMember, value: Any) -> bytes:
    if member.type == PrimitiveType.STRUCT:
        assert member.struct is not None
        return pack_struct(member.struct, value)
    if member.type == PrimitiveType.STRING:
        return _encode_string(value, member.name) + b"\0"
    return _pack_primitive(member.type, value, member.name)


def unpack_struct(qs: QmiStruct, data: bytes, offset: int = 0) -> tuple[dict[str, Any], int]:
    """Deserialize a struct.

    Returns:
        Tuple of (member values, bytes_consumed).
    """
    values: dict[str, Any] = {}
    pos = offset

    for member in qs.members:
        if member.is_dynamic_array or member.array_fixed:
            count = values[f"{member.name}_n"] if member.is_ptr else member.array_size
            items = []
            for _ in range(count):
                item, n = _unpack_element(member, data, pos)
                items.append(item)
                pos += n
            values[member.name] = items
        else:
            values[member.name], n = _unpack_element(member, data, pos)
            pos += n

    return values, pos - offset


def _unpack_element(member: QmiStructMember, data: bytes, offset: int) -> tuple[Any, int]:
    if member.type == PrimitiveType.STRUCT:
        assert member.struct is not None
        return unpack_struct(member.struct, data, offset)
    if member.type == PrimitiveType.STRING:
        end = data.find(b"\0", offset)
        if end < 0:
            raise _truncated(len(data) + 1, len(data))
        return data[offset:end].decode(STRING_ENCODING), end - offset + 1
    return _unpack_primitive(member.type, data, offset)


@dataclass
class DecodedMessage:
    """A decoded message: which one it is, its transaction id and member values."""

    message: QmiMessage
    txn: int
    values: dict[str, Any]


class MessageCodec:
    """Encode and decode the messages of one package."""

    def __init__(self, package: QmiPackage, definitions: QmiDefinitions) -> None:
        self.package = package
        self.definitions = definitions
        self._sizes = SizeCalculator(package, definitions)

    def _message(self, name: str) -> QmiMessage:
        qm = self.definitions.message(name)
        if qm is None:
            raise SerializationError(f"unknown message '{name}'")
        return qm

    def _elem_size(self, member: QmiMessageMember) -> int:
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            return self._sizes.calc_struct_size(member.struct).min_size
        return member.type.size

    # Encoding

    def encode(self, name: str, values: Mapping[str, Any], txn: int = 0) -> bytes:
        qm = self._message(name)
        values = _with_counts(qm.members, values, lambda m: m.is_array and not m.array_fixed)
        msg = QmiTlv(int(qm.type), txn, qm.msg_id)

        try:
            for member in qm.members:
                if member.name not in values:
                    if member.required:
                        raise SerializationError(f"missing required member '{member.name}'")
                    continue
                self._encode_member(msg, member, values[member.name])
            return msg.encode()
        except TlvError as e:
            raise SerializationError(str(e)) from e

    def _encode_element(self, member: QmiMessageMember, value: Any) -> bytes:
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            return pack_struct(member.struct, value)
        return _pack_primitive(member.type, value, member.name)

    def _encode_member(self, msg: QmiTlv, member: QmiMessageMember, value: Any) -> None:
        if member.type == PrimitiveType.STRING:
            msg.set(member.id, _encode_string(value, member.name))
        elif member.is_array and member.array_fixed:
            if len(value) != member.array_size:
                raise SerializationError(f"member '{member.name}' needs {member.array_size} elements, got {len(value)}")
            msg.set(member.id, b"".join(self._encode_element(member, item) for item in value))
        elif member.is_array:
            if len(value) > member.array_size:
                raise SerializationError(
                    f"member '{member.name}' holds at most {member.array_size} elements, got {len(value)}"
                )
            assert member.array_len_type is not None
            data = b"".join(self._encode_element(member, item) for item in value)
            msg.set_array(member.id, member.array_len_type.size, data, len(value))
        else:
            msg.set(member.id, self._encode_element(member, value))

    # Decoding

    def decode(self, data: bytes, name: str | None = None) -> DecodedMessage:
        """Decode a message; without ``name`` it is found by type and message id."""
        try:
            msg = QmiTlv.decode(data)
        except TlvError as e:
            raise SerializationError(str(e)) from e

        qm = self._message(name) if name is not None else self._identify(msg)
        values: dict[str, Any] = {}

        try:
            for member in qm.members:
                if member.id not in msg:
                    if member.required:
                        raise SerializationError(f"missing required member '{member.name}'")
                    continue
                values[member.name] = self._decode_member(msg, member)
        except TlvError as e:
            raise SerializationError(str(e)) from e

        return DecodedMessage(qm, msg.header.txn, values)

    def _identify(self, msg: QmiTlv) -> QmiMessage:
        matches = [
            qm
            for qm in self.definitions.messages
            if int(qm.type) == msg.header.type and qm.msg_id == msg.header.msg_id
        ]
        if not matches:
            raise SerializationError(f"no message with type {msg.header.type} and id {msg.header.msg_id:#06x}")
        if len(matches) > 1:
            names = ", ".join(qm.name for qm in matches)
            raise SerializationError(f"message id {msg.header.msg_id:#06x} is ambiguous: {names}")
        return matches[0]

    def _decode_elements(self, member: QmiMessageMember, data: bytes, count: int) -> list[Any]:
        size = self._elem_size(member)
        return [self._decode_element(member, data[i * size : (i + 1) * size]) for i in range(count)]

    def _decode_element(self, member: QmiMessageMember, data: bytes) -> Any:
        if member.type == PrimitiveType.STRUCT:
            assert member.struct is not None
            value, _ = unpack_struct(member.struct, data)
            return value
        value, _ = _unpack_primitive(member.type, data, 0)
        return value

    def _decode_member(self, msg: QmiTlv, member: QmiMessageMember) -> Any:
        if member.is_array and not member.array_fixed:
            assert member.array_len_type is not None
            result = msg.get_array(member.id, member.array_len_type.size, self._elem_size(member))
            assert result is not None
            count, data = result
            return self._decode_elements(member, data, count)

        value = msg.get(member.id)
        assert value is not None

        if member.type == PrimitiveType.STRING:
            if value.endswith(b"\0"):
                value = value[:-1]
            return value.decode(STRING_ENCODING)

        if member.is_array:
            expected = member.array_size * self._elem_size(member)
            if len(value) != expected:
                raise SerializationError(f"member '{member.name}': expected {expected} bytes but got {len(value)}")
            return self._decode_elements(member, value, member.array_size)

        if member.struct is not None and member.struct.has_ptr_members:
            result, _ = unpack_struct(member.struct, value)
            return result

        expected = self._elem_size(member)
        if len(value) != expected:
            raise SerializationError(f"member '{member.name}': expected {expected} bytes but got {len(value)}")
        return self._decode_element(member, value)
