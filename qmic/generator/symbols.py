"""Symbol table shared by the scanner and the parser of one compilation."""

import logging
from dataclasses import dataclass
from enum import Enum

from .types import (
    MAX_NAME_LENGTH,
    MessageType,
    PrimitiveType,
    QmiStruct,
    result_struct,
)

logger = logging.getLogger(__name__)


class TokenId(Enum):
    """Token categories other than single punctuation characters."""

    CONST = "const"
    ID = "identifier"
    MESSAGE = "(message)"
    NUM = "(number)"
    VALUE = "(value)"
    PACKAGE = "package"
    PACKAGE_TYPE = "package_type"
    STRUCT = "struct"
    TYPE = "type"
    REQUIRED = "required"
    OPTIONAL = "optional"
    EOF = "(EOF)"


@dataclass(frozen=True)
class Symbol:
    """A name the scanner resolves to something other than an identifier."""

    name: str
    token_id: TokenId
    message_type: MessageType | None = None
    type: PrimitiveType | None = None
    struct: QmiStruct | None = None
    value: int | None = None


KEYWORDS = {
    "const": TokenId.CONST,
    "optional": TokenId.OPTIONAL,
    "package": TokenId.PACKAGE,
    "package_type": TokenId.PACKAGE_TYPE,
    "required": TokenId.REQUIRED,
    "struct": TokenId.STRUCT,
}

MESSAGE_KEYWORDS = {
    # "message" predates the directional keywords and declares a response
    "message": MessageType.RESPONSE,
    "request": MessageType.REQUEST,
    "response": MessageType.RESPONSE,
    "indication": MessageType.INDICATION,
}


def is_valid_name(name: str) -> bool:
    """Check that name is alphabetic-led, alphanumeric/underscore and short enough."""
    if not name or not name[0].isascii() or not name[0].isalpha():
        return False
    if len(name) > MAX_NAME_LENGTH:
        return False
    return all(ch.isascii() and (ch.isalnum() or ch == "_") for ch in name)


class SymbolTable:
    """Append-only registry of keywords, types, constants and structs.

    A fresh table already knows the language keywords, the primitive types
    and the predeclared result struct.
    """

    def __init__(self) -> None:
        self._symbols: dict[str, Symbol] = {}

        for name, token_id in KEYWORDS.items():
            self._add(Symbol(name, token_id))
        for name, message_type in MESSAGE_KEYWORDS.items():
            self._add(Symbol(name, TokenId.MESSAGE, message_type=message_type))
        for prim in PrimitiveType:
            if prim != PrimitiveType.STRUCT:
                self._add(Symbol(prim.value, TokenId.TYPE, type=prim))

        result = result_struct()
        self.add_struct(result)

    def __contains__(self, name: str) -> bool:
        return name in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

    def find(self, name: str) -> Symbol | None:
        return self._symbols.get(name)

    def add_value(self, name: str, value: int) -> Symbol:
        return self._add(Symbol(name, TokenId.VALUE, value=value))

    def add_struct(self, struct: QmiStruct) -> Symbol:
        if struct.name is None:
            raise ValueError("cannot register an unnamed struct")
        return self._add(Symbol(struct.name, TokenId.TYPE, type=PrimitiveType.STRUCT, struct=struct))

    def _add(self, symbol: Symbol) -> Symbol:
        if not is_valid_name(symbol.name):
            raise ValueError(f"invalid symbol name {symbol.name!r}")
        if symbol.name in self._symbols:
            raise ValueError(f"symbol {symbol.name!r} already defined")

        logger.debug("adding symbol %s (%s)", symbol.name, symbol.token_id.name)
        self._symbols[symbol.name] = symbol
        return symbol
