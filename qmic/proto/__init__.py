"""Reference wire codec for QMI messages."""

from .codec import DecodedMessage as DecodedMessage
from .codec import MessageCodec as MessageCodec
from .codec import SerializationError as SerializationError
from .codec import pack_struct as pack_struct
from .codec import unpack_struct as unpack_struct
from .tlv import QmiTlv as QmiTlv
from .tlv import TlvError as TlvError
