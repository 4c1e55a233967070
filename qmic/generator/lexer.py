"""Scanner: turns IDL source text into tokens, one at a time."""

from dataclasses import dataclass

from .errors import LexError
from .symbols import SymbolTable, TokenId
from .types import MAX_NAME_LENGTH, MessageType, PrimitiveType, QmiStruct

# Oversized tokens are echoed back truncated to this many characters
TOKEN_ECHO_LENGTH = 24

MAX_NUMBER = (1 << 64) - 1

OCTAL_DIGITS = frozenset("01234567")
DECIMAL_DIGITS = frozenset("0123456789")
HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


@dataclass
class Token:
    """A scanned token.

    ``id`` is a TokenId, or the character itself for punctuation.
    """

    id: TokenId | str
    line: int
    text: str | None = None
    num: int = 0
    message_type: MessageType | None = None
    type: PrimitiveType | None = None
    struct: QmiStruct | None = None


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


class Scanner:
    """Produce tokens from source text, resolving names against ``symbols``.

    The symbol table is consulted at scan time, so names the parser
    registers (constants, structs) are recognized from then on.
    """

    def __init__(self, text: str, symbols: SymbolTable) -> None:
        self.text = text
        self.symbols = symbols
        self.pos = 0
        self.line = 1

    def _peek(self) -> str:
        if self.pos >= len(self.text):
            return ""
        ch = self.text[self.pos]
        if not ch.isascii():
            raise LexError("invalid non-ASCII character", self.line)
        if ch == "\0":
            raise LexError("invalid NUL character", self.line)
        return ch

    def _advance(self) -> str:
        ch = self._peek()
        if ch:
            self.pos += 1
            if ch == "\n":
                self.line += 1
        return ch

    def _skip(self) -> None:
        """Skip white space and comments (which start with '#', end with '\\n')."""
        while True:
            ch = self._peek()
            if ch == "#":
                while ch and ch != "\n":
                    self._advance()
                    ch = self._peek()
            elif ch and ch.isspace():
                self._advance()
            else:
                return

    def _take(self, valid: frozenset[str] | None, what: str, buf: str) -> str:
        while True:
            ch = self._peek()
            if not ch or not (_is_ident_char(ch) if valid is None else ch in valid):
                return buf
            if len(buf) == MAX_NAME_LENGTH:
                raise LexError(f'{what} too long: "{buf[:TOKEN_ECHO_LENGTH]}..."', self.line)
            buf += self._advance()

    def _identifier(self) -> Token:
        line = self.line
        name = self._take(None, "token", self._advance())

        sym = self.symbols.find(name)
        if sym is None:
            return Token(TokenId.ID, line, text=name)

        if sym.token_id == TokenId.VALUE:
            # Constants stand in for their numeric value
            return Token(TokenId.NUM, line, text=name, num=sym.value or 0)

        return Token(
            sym.token_id,
            line,
            text=name,
            message_type=sym.message_type,
            type=sym.type,
            struct=sym.struct,
        )

    def _number(self) -> Token:
        line = self.line
        first = self._advance()
        valid = DECIMAL_DIGITS
        base = 10
        prefix = first

        if first == "0":
            ch = self._peek()
            if ch in ("x", "X"):
                prefix += self._advance()
                valid = HEX_DIGITS
                base = 16
            elif ch and ch in OCTAL_DIGITS:
                valid = OCTAL_DIGITS
                base = 8

        text = self._take(valid, "number", prefix)
        digits = text[2:] if base == 16 else text
        if not digits:
            raise LexError(f"invalid number {text}", line)

        num = int(digits, base)
        if num > MAX_NUMBER:
            raise LexError(f"number {text} out of range", line)

        return Token(TokenId.NUM, line, text=text, num=num)

    def next_token(self) -> Token:
        self._skip()

        ch = self._peek()
        if not ch:
            return Token(TokenId.EOF, self.line)
        if ch.isalpha():
            return self._identifier()
        if ch.isdigit():
            return self._number()

        line = self.line
        self._advance()
        return Token(ch, line, text=ch)

    def tokens(self) -> list[Token]:
        """Scan everything that is left, EOF token included."""
        result = []
        while True:
            token = self.next_token()
            result.append(token)
            if token.id == TokenId.EOF:
                return result
