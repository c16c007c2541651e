from __future__ import annotations


class ConversionError(RuntimeError):
    pass


class GrammarError(ConversionError):
    """Dump text that does not match the dump grammar at all."""

    def __init__(self, message: str, *, line: int, column: int):
        super().__init__(f"{message} (line {line}, column {column})")
        self.line = line
        self.column = column


class MalformedStatementError(ConversionError):
    """A CREATE TABLE or COPY statement missing one of its parts."""

    def __init__(self, message: str, *, line: int):
        super().__init__(f"{message} (statement at line {line})")
        self.line = line


class UnsupportedCopySourceError(ConversionError):
    pass


class DumpReadError(ConversionError):
    pass


class CorruptRowError(ConversionError):
    pass


class InvariantViolation(ConversionError):
    pass
