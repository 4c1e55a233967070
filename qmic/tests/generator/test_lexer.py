"""Tests for the scanner."""

from pytest import raises

from qmic.generator.errors import LexError
from qmic.generator.lexer import Scanner
from qmic.generator.symbols import SymbolTable, TokenId
from qmic.generator.types import MessageType, PrimitiveType, QmiStruct


def scan(text, symbols=None):
    return Scanner(text, symbols or SymbolTable()).tokens()


def describe_tokens():
    def scans_statement(expect):
        tokens = scan("package foo;")
        expect([t.id for t in tokens]) == [TokenId.PACKAGE, TokenId.ID, ";", TokenId.EOF]
        expect(tokens[1].text) == "foo"

    def skips_comments_and_tracks_lines(expect):
        tokens = scan("# leading comment\npackage foo; # trailing\n\nconst X = 1;")
        expect(tokens[0].line) == 2
        expect(tokens[3].id) == TokenId.CONST
        expect(tokens[3].line) == 4

    def resolves_message_keywords(expect):
        tokens = scan("request response indication message")
        expect([t.message_type for t in tokens[:-1]]) == [
            MessageType.REQUEST,
            MessageType.RESPONSE,
            MessageType.INDICATION,
            MessageType.RESPONSE,
        ]

    def resolves_primitive_types(expect):
        token = scan("u16")[0]
        expect(token.id) == TokenId.TYPE
        expect(token.type) == PrimitiveType.U16

    def resolves_predeclared_result_struct(expect):
        token = scan("qmi_response_type_v01")[0]
        expect(token.id) == TokenId.TYPE
        expect(token.struct.name) == "qmi_response_type_v01"

    def returns_punctuation_as_itself(expect):
        tokens = scan("{*}()[]=:")
        expect([t.id for t in tokens[:-1]]) == list("{*}()[]=:")


def describe_live_symbols():
    def constants_scan_as_numbers(expect):
        symbols = SymbolTable()
        symbols.add_value("MAX_LEN", 42)

        token = Scanner("MAX_LEN", symbols).next_token()
        expect(token.id) == TokenId.NUM
        expect(token.num) == 42

    def structs_scan_as_types_once_registered(expect):
        symbols = SymbolTable()
        scanner = Scanner("point point", symbols)

        expect(scanner.next_token().id) == TokenId.ID
        symbols.add_struct(QmiStruct(name="point"))
        token = scanner.next_token()
        expect(token.id) == TokenId.TYPE
        expect(token.type) == PrimitiveType.STRUCT

    def rejects_duplicate_symbols(expect):
        symbols = SymbolTable()
        with raises(ValueError, match="already defined"):
            symbols.add_value("u8", 1)


def describe_numbers():
    def scans_decimal(expect):
        expect(scan("42")[0].num) == 42

    def scans_hex(expect):
        expect(scan("0x1F")[0].num) == 31

    def scans_octal(expect):
        expect(scan("017")[0].num) == 15

    def scans_zero(expect):
        expect(scan("0")[0].num) == 0

    def scans_largest_value(expect):
        expect(scan("0xffffffffffffffff")[0].num) == (1 << 64) - 1

    def rejects_hex_prefix_without_digits(expect):
        with raises(LexError, match="invalid number 0x"):
            scan("0x;")

    def rejects_overflow(expect):
        with raises(LexError, match="out of range"):
            scan("18446744073709551616")


def describe_errors():
    def rejects_non_ascii(expect):
        with raises(LexError, match="non-ASCII") as e:
            scan("package\n café;")
        expect(e.value.line) == 2

    def rejects_nul(expect):
        with raises(LexError, match="NUL"):
            scan("package \0;")

    def rejects_long_identifier(expect):
        with raises(LexError) as e:
            scan("a" * 129)
        expect(str(e.value)) == 'parse error on line 1: token too long: "' + "a" * 24 + '..."'

    def accepts_identifier_at_limit(expect):
        tokens = scan("a" * 128)
        expect(tokens[0].text) == "a" * 128

    def rejects_long_number(expect):
        with raises(LexError, match="number too long"):
            scan("1" * 129)
