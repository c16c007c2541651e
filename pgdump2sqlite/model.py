"""Statement model shared by the parser, the SQL generator and the loader."""

from __future__ import annotations

import dataclasses
import enum
from typing import Union

from .errors import ConversionError

STDIN = "stdin"

# pg_dump -Ft writes COPY sources as '$$PATH$$/<member>.dat'
PATH_PLACEHOLDER = "$$PATH$$/"

ARCHIVE_TOC_MEMBER = "restore.sql"


class ColumnType(enum.Enum):
    INTEGER = "integer"
    TEXT = "text"
    BOOLEAN = "boolean"
    REAL = "real"
    # Any type we do not recognize; stored as text.
    UNKNOWN = "unknown"


_TYPE_TOKENS = {
    "integer": ColumnType.INTEGER,
    "boolean": ColumnType.BOOLEAN,
    "double": ColumnType.REAL,
    "text": ColumnType.TEXT,
}


def map_column_type(token: str) -> ColumnType:
    """Map a PostgreSQL type token to a ColumnType.

    Only the first word is looked at, so ``double precision`` is REAL and
    ``character varying(255)`` is UNKNOWN.
    """
    words = token.strip().lower().split()
    if not words:
        return ColumnType.UNKNOWN
    return _TYPE_TOKENS.get(words[0], ColumnType.UNKNOWN)


@dataclasses.dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType
    source_type: str = ""


@dataclasses.dataclass(frozen=True)
class CreateTable:
    name: str
    columns: tuple[Column, ...]


@dataclasses.dataclass(frozen=True)
class Copy:
    name: str
    columns: tuple[str, ...]
    source: str
    # Byte offset right after the statement's ';' in the dump text.
    end_offset: int

    @property
    def from_stdin(self) -> bool:
        return self.source.lower() == STDIN


@dataclasses.dataclass(frozen=True)
class Unsupported:
    keyword: str
    line: int


Statement = Union[CreateTable, Copy]

Row = tuple[Union[str, None], ...]


@dataclasses.dataclass(frozen=True)
class PlainDump:
    path: str

    @property
    def compressed(self) -> bool:
        return self.path.endswith(".gz")


@dataclasses.dataclass(frozen=True)
class ArchiveDump:
    path: str


DumpSource = Union[PlainDump, ArchiveDump]


def dump_source_for(path: str) -> DumpSource:
    lowered = path.lower()
    if lowered.endswith(".sql") or lowered.endswith(".sql.gz"):
        return PlainDump(path)
    if lowered.endswith(".tar"):
        return ArchiveDump(path)
    raise ConversionError(
        f"Unknown dump format for '{path}' (expected .sql, .sql.gz or .tar)"
    )
