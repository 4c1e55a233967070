"""QMI message container: a fixed header followed by type-length-value items.

Wire layout (little-endian):

    header: type u8, transaction u16, message id u16, payload length u16
    TLV:    type u8, length u16, value
"""

import struct
from dataclasses import dataclass

HEADER = struct.Struct("<BHHH")
TLV_HEADER = struct.Struct("<BH")

LEN_FORMATS = {1: "<B", 2: "<H", 4: "<I"}

MAX_TLV_TYPE = 0xFF
MAX_TLV_LENGTH = 0xFFFF


class TlvError(RuntimeError):
    """Raised when a message cannot be built or its buffer is malformed."""


@dataclass
class QmiHeader:
    type: int
    txn: int
    msg_id: int


class QmiTlv:
    """An in-memory QMI message, TLVs kept in insertion order.

    Setting a TLV type that is already present replaces its value.
    """

    def __init__(self, type: int, txn: int, msg_id: int) -> None:
        self.header = QmiHeader(type, txn, msg_id)
        self._items: dict[int, bytes] = {}

    def __contains__(self, tlv_type: int) -> bool:
        return tlv_type in self._items

    def __len__(self) -> int:
        return len(self._items)

    def types(self) -> list[int]:
        return list(self._items)

    def set(self, tlv_type: int, value: bytes) -> None:
        if not 0 <= tlv_type <= MAX_TLV_TYPE:
            raise TlvError(f"TLV type {tlv_type} out of range")
        if len(value) > MAX_TLV_LENGTH:
            raise TlvError(f"TLV {tlv_type:#04x} too long: {len(value)} bytes")
        self._items[tlv_type] = bytes(value)

    def get(self, tlv_type: int) -> bytes | None:
        return self._items.get(tlv_type)

    def set_array(self, tlv_type: int, len_size: int, data: bytes, count: int) -> None:
        """Store ``count`` elements behind a count prefix ``len_size`` bytes wide."""
        fmt = LEN_FORMATS.get(len_size)
        if fmt is None:
            raise TlvError(f"unsupported count width {len_size}")
        try:
            prefix = struct.pack(fmt, count)
        except struct.error:
            raise TlvError(f"count {count} does not fit in {len_size} bytes") from None
        self.set(tlv_type, prefix + data)

    def get_array(self, tlv_type: int, len_size: int, elem_size: int) -> tuple[int, bytes] | None:
        """Return the element count and element bytes of a counted array TLV.

        The value must hold exactly ``count`` elements of ``elem_size`` bytes.
        """
        value = self.get(tlv_type)
        if value is None:
            return None

        fmt = LEN_FORMATS.get(len_size)
        if fmt is None:
            raise TlvError(f"unsupported count width {len_size}")
        if len(value) < len_size:
            raise TlvError(f"TLV {tlv_type:#04x}: expected at least {len_size} bytes but got {len(value)}")

        (count,) = struct.unpack_from(fmt, value)
        data = value[len_size:]
        if len(data) != count * elem_size:
            raise TlvError(
                f"TLV {tlv_type:#04x}: {count} elements of {elem_size} bytes do not match {len(data)} bytes"
            )
        return count, data

    def encode(self) -> bytes:
        payload = bytearray()
        for tlv_type, value in self._items.items():
            payload.extend(TLV_HEADER.pack(tlv_type, len(value)))
            payload.extend(value)

        if len(payload) > MAX_TLV_LENGTH:
            raise TlvError(f"message too long: {len(payload)} bytes")

        try:
            header = HEADER.pack(self.header.type, self.header.txn, self.header.msg_id, len(payload))
        except struct.error:
            raise TlvError(f"invalid message header {self.header}") from None
        return header + bytes(payload)

    @classmethod
    def decode(cls, buf: bytes) -> "QmiTlv":
        if len(buf) < HEADER.size:
            raise TlvError(f"expected at least {HEADER.size} bytes but got {len(buf)}")

        msg_type, txn, msg_id, length = HEADER.unpack_from(buf)
        if HEADER.size + length > len(buf):
            raise TlvError(f"expected at least {HEADER.size + length} bytes but got {len(buf)}")

        msg = cls(msg_type, txn, msg_id)
        offset = HEADER.size
        end = HEADER.size + length
        while offset < end:
            if offset + TLV_HEADER.size > end:
                raise TlvError(f"truncated TLV header at offset {offset}")
            tlv_type, tlv_len = TLV_HEADER.unpack_from(buf, offset)
            offset += TLV_HEADER.size
            if offset + tlv_len > end:
                raise TlvError(f"TLV {tlv_type:#04x}: expected at least {tlv_len} bytes but got {end - offset}")
            msg._items[tlv_type] = bytes(buf[offset : offset + tlv_len])
            offset += tlv_len

        return msg
