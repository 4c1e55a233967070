"""Errors raised while compiling a definition file."""


class CompileError(RuntimeError):
    """Base for every error that aborts a compilation."""

    kind = "error"

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"{self.kind} on line {self.line}: {self.message}"


class LexError(CompileError):
    """Raised for invalid characters, oversized tokens and number overflow."""

    kind = "parse error"


class ParseError(CompileError):
    """Raised when the token stream does not match the grammar."""

    kind = "parse error"


class ValidationError(CompileError):
    """Raised when a well-formed definition breaks a semantic rule."""

    kind = "parse error"


class GenerationError(CompileError):
    """Raised when a backend meets IR it cannot emit code for."""

    kind = "generation error"
