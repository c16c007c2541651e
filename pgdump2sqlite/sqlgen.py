from __future__ import annotations

from typing import assert_never

from .errors import ConversionError
from .model import ColumnType, Copy, CreateTable


def quote_ident(name: str) -> str:
    # SQLite has no escape for "]" inside bracket quoting.
    if "]" in name:
        raise ConversionError(f"Identifier cannot be bracket-quoted: {name!r}")
    return "[" + name + "]"


def storage_type(column_type: ColumnType) -> str:
    """SQLite storage type for a ColumnType."""
    match column_type:
        case ColumnType.INTEGER | ColumnType.BOOLEAN:
            return "integer"
        case ColumnType.REAL:
            return "real"
        case ColumnType.TEXT | ColumnType.UNKNOWN:
            return "text"
        case _:
            assert_never(column_type)


def ddl_for(table: CreateTable) -> str:
    col_defs = ", ".join(
        f"{quote_ident(col.name)} {storage_type(col.type)}" for col in table.columns
    )
    return f"create table {quote_ident(table.name)} ( {col_defs} )"


def dml_for(copy: Copy) -> str:
    cols_sql = ", ".join(quote_ident(c) for c in copy.columns)
    placeholders = ", ".join(["?"] * len(copy.columns))
    return f"insert into {quote_ident(copy.name)} ( {cols_sql} ) values ( {placeholders} )"
