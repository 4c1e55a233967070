"""qmic - QMI interface definition compiler."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("qmic")
except PackageNotFoundError:
    __version__ = "(local)"
