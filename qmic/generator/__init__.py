"""QMI interface definition parser and C code generators."""

from .errors import *
from .parser import parse as parse
from .sizes import MessageSizeInfo as MessageSizeInfo
from .sizes import ProtocolSizeInfo as ProtocolSizeInfo
from .sizes import SizeCalculator as SizeCalculator
from .sizes import SizeInfo as SizeInfo
from .sizes import SizeKind as SizeKind
from .sizes import StructSizeInfo as StructSizeInfo
from .sizes import calculate_sizes as calculate_sizes
from .types import *
