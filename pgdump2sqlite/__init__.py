"""Import PostgreSQL dumps (plain SQL, gzipped SQL or pg_dump tar archives) into SQLite."""

from .errors import (
    ConversionError,
    CorruptRowError,
    DumpReadError,
    GrammarError,
    InvariantViolation,
    MalformedStatementError,
    UnsupportedCopySourceError,
)
from .extract import extract_rows, read_dump_text
from .loader import (
    ConversionReport,
    SkippedCopy,
    convert_pg_dump_to_sqlite,
    copy_data,
    create_schema,
    split_statements,
    write_report_json,
)
from .model import (
    ArchiveDump,
    Column,
    ColumnType,
    Copy,
    CreateTable,
    PlainDump,
    dump_source_for,
    map_column_type,
)
from .parser import parse_dump, parse_statements
from .sqlgen import ddl_for, dml_for

__version__ = "0.1.0"
