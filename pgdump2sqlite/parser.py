"""Parser for PostgreSQL plain-text dumps.

The dump is read as a sequence of ``;``-terminated statements. Two kinds are
modelled: ``CREATE TABLE`` with a column list and ``COPY ... FROM``. Every
other statement (``SET``, ``ALTER``, ``CREATE FUNCTION``, sequences, owners,
psql meta-commands, ...) is kept as an ``Unsupported`` item so callers can
account for it, and ``parse_dump`` drops it.

Inline COPY data following ``FROM stdin;`` in a plain dump is skipped here; the
rows are read later by the extractor, which seeks to ``Copy.end_offset``.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Union

from .errors import GrammarError, MalformedStatementError
from .model import STDIN, Column, Copy, CreateTable, Statement, Unsupported, map_column_type

logger = logging.getLogger(__name__)

ParsedItem = Union[CreateTable, Copy, Unsupported]

_TOKEN_RE = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<line_comment>--[^\n]*)
    | (?P<block_comment>/\*)
    | (?P<qident>"(?:[^"]|"")*")
    | (?P<estring>[Ee]'(?:[^'\\]|\\.|'')*')
    | (?P<string>'(?:[^']|'')*')
    | (?P<dollar>\$(?:[^\W\d]\w*)?\$)
    | (?P<bracket>\[[^\]\n]*\])
    | (?P<word>\w[\w$]*)
    | (?P<punct>[(),;.])
    | (?P<meta>\\)
    | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_COPY_END_RE = re.compile(r"^\\\.\r?$", re.MULTILINE)

_COMMENT_DELIM_RE = re.compile(r"/\*|\*/")

_TABLE_CONSTRAINTS = {"CONSTRAINT", "PRIMARY", "UNIQUE", "FOREIGN", "CHECK", "EXCLUDE", "LIKE"}

_COLUMN_CONSTRAINTS = {
    "NOT",
    "NULL",
    "DEFAULT",
    "CONSTRAINT",
    "PRIMARY",
    "UNIQUE",
    "REFERENCES",
    "CHECK",
    "COLLATE",
    "GENERATED",
}


@dataclasses.dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    start: int
    end: int

    def is_keyword(self, *words: str) -> bool:
        return self.kind == "word" and self.text.upper() in words

    def is_punct(self, char: str) -> bool:
        return self.kind == "punct" and self.text == char


def _value(tok: _Token) -> str | None:
    """Identifier value of a bare, double-quoted or bracketed token."""
    if tok.kind == "word":
        return tok.text
    if tok.kind == "qident":
        return tok.text[1:-1].replace('""', '"')
    if tok.kind == "bracket":
        return tok.text[1:-1]
    return None


class _Scanner:
    """Tokenizer with line and byte-offset bookkeeping."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self._line_mark = 0
        self._line_no = 1
        self._byte_mark = 0
        self._byte_offset = 0

    def line_of(self, pos: int) -> int:
        if pos < self._line_mark:
            return self.text.count("\n", 0, pos) + 1
        self._line_no += self.text.count("\n", self._line_mark, pos)
        self._line_mark = pos
        return self._line_no

    def error(self, message: str, pos: int) -> GrammarError:
        line = self.text.count("\n", 0, pos) + 1
        column = pos - (self.text.rfind("\n", 0, pos) + 1) + 1
        return GrammarError(message, line=line, column=column)

    def byte_offset(self, pos: int) -> int:
        # Positions are requested in increasing order, so encode only the delta.
        chunk = self.text[self._byte_mark : pos]
        self._byte_offset += len(chunk.encode("utf-8", errors="surrogateescape"))
        self._byte_mark = pos
        return self._byte_offset

    def next_token(self) -> _Token | None:
        text = self.text
        while self.pos < len(text):
            m = _TOKEN_RE.match(text, self.pos)
            assert m is not None
            kind = m.lastgroup
            start = self.pos

            if kind in ("space", "line_comment"):
                self.pos = m.end()
                continue
            if kind == "block_comment":
                self.pos = self._skip_block_comment(start)
                continue
            if kind == "dollar":
                tag = m.group()
                close = text.find(tag, m.end())
                if close == -1:
                    raise self.error(f"Unterminated dollar-quoted string {tag}", start)
                self.pos = close + len(tag)
                return _Token("dollar", text[start : self.pos], start, self.pos)
            if kind == "other" and m.group() in ("'", '"'):
                raise self.error(f"Unterminated quoted literal {m.group()}", start)

            self.pos = m.end()
            return _Token(kind, m.group(), start, self.pos)
        return None

    def _skip_block_comment(self, start: int) -> int:
        depth = 0
        pos = start
        while True:
            m = _COMMENT_DELIM_RE.search(self.text, pos)
            if m is None:
                raise self.error("Unterminated block comment", start)
            depth += 1 if m.group() == "/*" else -1
            pos = m.end()
            if depth == 0:
                return pos

    def rest_of_line(self, start: int) -> str:
        end = self.text.find("\n", start)
        if end == -1:
            end = len(self.text)
        self.pos = end
        return self.text[start:end]

    def read_statement(self, first: _Token) -> list[_Token]:
        tokens = [first]
        depth = 0
        tok: _Token | None = first
        while tok is not None:
            if tok.is_punct("("):
                depth += 1
            elif tok.is_punct(")"):
                depth -= 1
                if depth < 0:
                    raise self.error("Unbalanced ')'", tok.start)
            elif tok.is_punct(";") and depth == 0:
                return tokens
            tok = self.next_token()
            if tok is not None:
                tokens.append(tok)
        if depth > 0:
            raise self.error("Unbalanced '(' in statement", first.start)
        raise self.error(f"Unterminated statement starting with {first.text!r}", first.start)

    def skip_copy_data(self, table: str, stmt_start: int) -> None:
        newline = self.text.find("\n", self.pos)
        m = None if newline == -1 else _COPY_END_RE.search(self.text, newline + 1)
        if m is None:
            raise self.error(
                f"COPY data for table '{table}' is not terminated by '\\.'", stmt_start
            )
        self.pos = m.end()


class _StatementParser:
    """Recursive descent over the tokens of one statement (ending with ';')."""

    def __init__(self, scanner: _Scanner, tokens: list[_Token]):
        self.scanner = scanner
        self.tokens = tokens
        self.i = 0
        self.line = scanner.line_of(tokens[0].start)

    def peek(self) -> _Token:
        return self.tokens[min(self.i, len(self.tokens) - 1)]

    def advance(self) -> _Token:
        tok = self.peek()
        self.i += 1
        return tok

    def accept_keyword(self, *words: str) -> bool:
        if self.peek().is_keyword(*words):
            self.i += 1
            return True
        return False

    def accept_punct(self, char: str) -> bool:
        if self.peek().is_punct(char):
            self.i += 1
            return True
        return False

    def malformed(self, message: str) -> MalformedStatementError:
        return MalformedStatementError(message, line=self.line)

    def unsupported(self) -> Unsupported:
        first = self.tokens[0]
        keyword = first.text.upper() if first.kind == "word" else first.text
        return Unsupported(keyword=keyword, line=self.line)

    def qualified_name(self) -> str | None:
        # schema.table: only the last component is kept
        name = _value(self.peek())
        if name is None:
            return None
        self.i += 1
        while self.peek().is_punct(".") and self.i + 1 < len(self.tokens):
            part = _value(self.tokens[self.i + 1])
            if part is None:
                break
            name = part
            self.i += 2
        return name

    def group_items(self) -> list[list[_Token]]:
        """Comma separated items up to the ')' closing an already consumed '('."""
        items: list[list[_Token]] = []
        current: list[_Token] = []
        depth = 0
        while True:
            tok = self.advance()
            if tok.is_punct(";"):
                raise self.malformed("Unclosed '(' in statement")
            if tok.is_punct(")") and depth == 0:
                if current or items:
                    items.append(current)
                return items
            if tok.is_punct(",") and depth == 0:
                items.append(current)
                current = []
                continue
            if tok.is_punct("("):
                depth += 1
            elif tok.is_punct(")"):
                depth -= 1
            current.append(tok)

    def parse(self) -> ParsedItem:
        first = self.peek()
        if first.is_keyword("CREATE"):
            return self.create_table()
        if first.is_keyword("COPY"):
            return self.copy()
        return self.unsupported()

    def create_table(self) -> ParsedItem:
        self.advance()
        self.accept_keyword("GLOBAL", "LOCAL")
        self.accept_keyword("TEMP", "TEMPORARY", "UNLOGGED")
        if not self.accept_keyword("TABLE"):
            return self.unsupported()
        if self.accept_keyword("IF"):
            if not (self.accept_keyword("NOT") and self.accept_keyword("EXISTS")):
                raise self.malformed("Expected IF NOT EXISTS in CREATE TABLE")
        name = self.qualified_name()
        if name is None:
            raise self.malformed("CREATE TABLE without a table name")
        if not self.accept_punct("("):
            # CREATE TABLE ... AS / PARTITION OF / OF type
            return self.unsupported()

        columns = []
        for item in self.group_items():
            if not item:
                raise self.malformed(f"Empty column definition in table '{name}'")
            column = self.column_def(name, item)
            if column is not None:
                columns.append(column)
        if not columns:
            raise self.malformed(f"Table '{name}' has no columns")
        return CreateTable(name=name, columns=tuple(columns))

    def column_def(self, table: str, item: list[_Token]) -> Column | None:
        head = item[0]
        if head.kind == "word" and head.text.upper() in _TABLE_CONSTRAINTS:
            return None
        name = _value(head)
        if name is None:
            raise self.malformed(f"Cannot parse column definition in table '{table}'")

        type_tokens: list[_Token] = []
        depth = 0
        for tok in item[1:]:
            if depth == 0 and tok.kind == "word" and tok.text.upper() in _COLUMN_CONSTRAINTS:
                break
            if tok.is_punct("("):
                depth += 1
            elif tok.is_punct(")"):
                depth -= 1
            type_tokens.append(tok)
        if not type_tokens:
            raise self.malformed(f"Column '{name}' of table '{table}' has no type")

        text = self.scanner.text[type_tokens[0].start : type_tokens[-1].end]
        source_type = " ".join(text.split())
        return Column(name=name, type=map_column_type(source_type), source_type=source_type)

    def copy(self) -> ParsedItem:
        self.advance()
        if self.peek().is_punct("("):
            # COPY (query) TO ...
            return self.unsupported()
        name = self.qualified_name()
        if name is None:
            raise self.malformed("COPY without a table name")

        columns: list[str] = []
        if self.accept_punct("("):
            for item in self.group_items():
                value = _value(item[0]) if len(item) == 1 else None
                if value is None:
                    raise self.malformed(f"Invalid column list in COPY into '{name}'")
                columns.append(value)

        if self.peek().is_keyword("TO"):
            return self.unsupported()
        if not self.accept_keyword("FROM"):
            raise self.malformed(f"COPY into '{name}' has no FROM clause")

        tok = self.advance()
        if tok.is_keyword("STDIN"):
            source = STDIN
        elif tok.kind == "string":
            source = tok.text[1:-1].replace("''", "'")
        elif tok.kind == "estring":
            source = tok.text[2:-1].replace("''", "'").replace("\\'", "'").replace("\\\\", "\\")
        else:
            raise self.malformed(
                f"COPY into '{name}' must read FROM stdin or a quoted path"
            )
        if not columns:
            raise self.malformed(f"COPY into '{name}' declares no columns")

        end = self.tokens[-1].end
        return Copy(
            name=name,
            columns=tuple(columns),
            source=source,
            end_offset=self.scanner.byte_offset(end),
        )


def parse_statements(text: str, *, inline_copy_data: bool = True) -> list[ParsedItem]:
    """Parse a dump into CreateTable, Copy and Unsupported items, in order.

    With ``inline_copy_data`` (plain dumps) every ``COPY ... FROM stdin;`` is
    followed by its data block, which is skipped. The ``restore.sql`` of a tar
    archive carries statements only, so pass ``inline_copy_data=False`` there.
    """
    scanner = _Scanner(text)
    items: list[ParsedItem] = []

    while True:
        first = scanner.next_token()
        if first is None:
            break

        if first.kind == "meta":
            # psql meta-command (\connect, \restrict, ...), ends at end of line
            line = scanner.line_of(first.start)
            command = scanner.rest_of_line(first.start).split(maxsplit=1)[0]
            items.append(Unsupported(keyword=command, line=line))
            continue

        tokens = scanner.read_statement(first)
        item = _StatementParser(scanner, tokens).parse()
        if inline_copy_data and isinstance(item, Copy) and item.from_stdin:
            scanner.skip_copy_data(item.name, first.start)
        items.append(item)

    return items


def parse_dump(text: str, *, inline_copy_data: bool = True) -> list[Statement]:
    """Parse a dump and keep only the statements the loader understands."""
    items = parse_statements(text, inline_copy_data=inline_copy_data)
    stmts: list[Statement] = [
        item for item in items if isinstance(item, (CreateTable, Copy))
    ]
    logger.debug(
        "Parsed %d statements (%d supported, %d unsupported)",
        len(items),
        len(stmts),
        len(items) - len(stmts),
    )
    return stmts
