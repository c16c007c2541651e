"""Load a parsed PostgreSQL dump into SQLite.

The import runs in two phases over one connection:

1. schema: every CREATE TABLE is executed in a single transaction;
2. data: each COPY statement gets its own transaction, rows are inserted one
   by one with a prepared INSERT.

A failure rolls back the transaction in progress only; COPY statements that
already committed stay in the database.
"""

from __future__ import annotations

import contextlib
import dataclasses
import json
import logging
import os
import sqlite3
import time
from typing import Any, Callable, Iterator, Sequence, assert_never

from .errors import ConversionError, InvariantViolation
from .extract import copy_skip_reason, extract_rows, read_dump_text
from .model import (
    ArchiveDump,
    Column,
    ColumnType,
    Copy,
    CreateTable,
    DumpSource,
    PlainDump,
    Row,
    Unsupported,
    dump_source_for,
)
from .parser import ParsedItem, parse_statements
from .sqlgen import ddl_for, dml_for, storage_type

logger = logging.getLogger(__name__)

_BOOLEAN_VALUES = {"t": 1, "f": 0, "true": 1, "false": 0}


@dataclasses.dataclass(frozen=True)
class SkippedCopy:
    table: str
    source: str
    reason: str


@dataclasses.dataclass
class ConversionReport:
    pg_dump_path: str
    sqlite_path: str
    dump_format: str = "plain"
    tables: list[str] = dataclasses.field(default_factory=list)
    rows_copied: dict[str, int] = dataclasses.field(default_factory=dict)
    statements_skipped: int = 0
    skipped_copies: list[SkippedCopy] = dataclasses.field(default_factory=list)
    warnings: list[str] = dataclasses.field(default_factory=list)
    type_conversions: dict[str, list[str]] = dataclasses.field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(self.rows_copied.values())


def report_to_dict(report: ConversionReport) -> dict[str, Any]:
    return {
        "pg_dump_path": report.pg_dump_path,
        "sqlite_path": report.sqlite_path,
        "dump_format": report.dump_format,
        "tables": list(report.tables),
        "rows_copied": dict(report.rows_copied),
        "total_rows": report.total_rows,
        "statements_skipped": report.statements_skipped,
        "skipped_copies": [dataclasses.asdict(s) for s in report.skipped_copies],
        "warnings": list(report.warnings),
        "type_conversions": {k: list(v) for k, v in report.type_conversions.items()},
    }


def write_report_json(report: ConversionReport, path: str) -> None:
    payload = json.dumps(
        report_to_dict(report), ensure_ascii=False, indent=2, sort_keys=True
    )
    if path == "-":
        print(payload)
        return
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload)
        f.write("\n")


@contextlib.contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """BEGIN on enter, COMMIT on success, ROLLBACK and re-raise on error."""
    cur = conn.cursor()
    try:
        cur.execute("BEGIN")
        try:
            yield cur
        except BaseException:
            # SQLite may already have rolled back (e.g. SQLITE_FULL).
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        cur.execute("COMMIT")
    finally:
        cur.close()


def split_statements(
    items: Sequence[ParsedItem],
) -> tuple[list[CreateTable], list[Copy], list[Unsupported]]:
    """Partition parsed items by kind, keeping their relative order."""
    tables: list[CreateTable] = []
    copies: list[Copy] = []
    unsupported: list[Unsupported] = []
    for item in items:
        match item:
            case CreateTable():
                tables.append(item)
            case Copy():
                copies.append(item)
            case Unsupported():
                unsupported.append(item)
            case _:
                assert_never(item)
    return tables, copies, unsupported


def create_schema(
    conn: sqlite3.Connection,
    tables: Sequence[CreateTable],
    *,
    report: ConversionReport | None = None,
) -> None:
    """Create all tables inside one transaction."""
    for stmt in tables:
        if not isinstance(stmt, CreateTable):
            raise InvariantViolation(
                f"Schema phase expects CREATE TABLE statements, got {type(stmt).__name__}"
            )

    ddl = [(t.name, ddl_for(t)) for t in tables]
    current = None
    try:
        with transaction(conn) as cur:
            for current, sql in ddl:
                logger.debug("%s", sql)
                cur.execute(sql)
    except sqlite3.Error as exc:
        raise ConversionError(f"creating schema (table '{current}')") from exc

    if report is not None:
        for t in tables:
            report.tables.append(t.name)
            for col in t.columns:
                if col.type is ColumnType.UNKNOWN:
                    key = f"{col.source_type} -> {storage_type(col.type)}"
                    report.type_conversions.setdefault(key, []).append(f"{t.name}.{col.name}")


def _row_adapter(copy: Copy, columns: Sequence[Column] | None) -> Callable[[Row], Sequence[Any]]:
    """Bind PostgreSQL booleans (t/f) as 1/0 for columns declared boolean."""
    types = {c.name: c.type for c in columns or ()}
    positions = [
        i for i, name in enumerate(copy.columns) if types.get(name) is ColumnType.BOOLEAN
    ]
    if not positions:
        return lambda row: row

    def _adapt_row(row: Row) -> list[Any]:
        values: list[Any] = list(row)
        for i in positions:
            v = values[i]
            if v is not None:
                values[i] = _BOOLEAN_VALUES.get(v, v)
        return values

    return _adapt_row


def _insert_rows(
    conn: sqlite3.Connection,
    copy: Copy,
    source: DumpSource,
    columns: Sequence[Column] | None,
    *,
    progress=None,
    update_every: int = 1_000,
) -> int:
    sql = dml_for(copy)
    adapt = _row_adapter(copy, columns)
    task_id = None
    if progress is not None:
        task_id = progress.add_task(f"Copy {copy.name}", total=None)

    n = 0
    try:
        with transaction(conn) as cur, contextlib.closing(extract_rows(copy, source)) as rows:
            for row in rows:
                cur.execute(sql, adapt(row))
                n += cur.rowcount
                if task_id is not None and n % update_every == 0:
                    progress.update(task_id, completed=n)
    except (sqlite3.Error, OSError) as exc:
        raise ConversionError(f"inserting data into '{copy.name}'") from exc
    except ConversionError as exc:
        exc.add_note(f"while inserting data into '{copy.name}'")
        raise
    finally:
        if task_id is not None:
            progress.update(task_id, total=n, completed=n)
    return n


def copy_data(
    conn: sqlite3.Connection,
    copies: Sequence[Copy],
    source: DumpSource,
    *,
    tables: Sequence[CreateTable] | None = None,
    report: ConversionReport | None = None,
    progress=None,
    console=None,
    verbose: bool = False,
) -> int:
    """Insert the rows of every COPY statement; returns the affected row count."""
    for stmt in copies:
        if not isinstance(stmt, Copy):
            raise InvariantViolation(
                f"Data phase expects COPY statements, got {type(stmt).__name__}"
            )

    columns_by_table = {t.name: t.columns for t in tables or ()}
    total = 0
    for copy in copies:
        reason = copy_skip_reason(copy, source)
        if reason is not None:
            logger.warning("Skipping COPY into '%s': %s", copy.name, reason)
            if report is not None:
                report.skipped_copies.append(
                    SkippedCopy(table=copy.name, source=copy.source, reason=reason)
                )
                report.warnings.append(f"Skipping COPY into '{copy.name}': {reason}")
            continue

        n = _insert_rows(
            conn, copy, source, columns_by_table.get(copy.name), progress=progress
        )
        total += n
        if report is not None:
            report.rows_copied[copy.name] = report.rows_copied.get(copy.name, 0) + n
        if verbose and console is not None:
            console.print(f"  [dim]{copy.name}: completed {n:,} rows[/dim]")

    return total


def _remove_existing(sqlite_path: str) -> None:
    os.remove(sqlite_path)
    for suffix in ("-journal", "-wal", "-shm"):
        if os.path.exists(sqlite_path + suffix):
            os.remove(sqlite_path + suffix)


def _print_summary(console, report: ConversionReport, elapsed: float) -> None:
    from rich.markup import escape
    from rich.panel import Panel
    from rich.table import Table as RichTable

    elapsed_str = f"{int(elapsed // 60)}:{int(elapsed % 60):02d}"

    summary = RichTable.grid(padding=(0, 1))
    summary.add_column(justify="right", style="bold")
    summary.add_column()
    summary.add_row("From", report.pg_dump_path)
    summary.add_row("To", report.sqlite_path)
    summary.add_row("Format", report.dump_format)
    summary.add_row("Tables", str(len(report.tables)))
    summary.add_row("Rows", f"{report.total_rows:,}")
    summary.add_row("Statements skipped", str(report.statements_skipped))
    if report.type_conversions:
        n_cols = sum(len(cols) for cols in report.type_conversions.values())
        summary.add_row("Stored as text", f"{n_cols} columns of unmapped types")
    summary.add_row("Elapsed", elapsed_str)
    console.print(Panel(summary, title="PostgreSQL → SQLite", border_style="green"))

    # Per-copy details live in the JSON report; only name what was not loaded.
    for s in report.skipped_copies:
        console.print(f"[yellow]skipped[/yellow] COPY into {escape(s.table)}: {escape(s.reason)}")


def convert_pg_dump_to_sqlite(
    *,
    pg_dump_path: str,
    sqlite_path: str,
    overwrite: bool = False,
    show_progress: bool = True,
    verbose: bool = False,
) -> ConversionReport:
    """Convert a PostgreSQL dump (.sql, .sql.gz or .tar) into an SQLite file."""
    start_time = time.time()

    if not os.path.exists(pg_dump_path):
        raise FileNotFoundError(pg_dump_path)
    source = dump_source_for(pg_dump_path)

    if os.path.exists(sqlite_path):
        if not overwrite:
            raise ConversionError(
                f"Destination already exists: {sqlite_path} (pass overwrite=True to replace)"
            )
        _remove_existing(sqlite_path)

    report = ConversionReport(
        pg_dump_path=pg_dump_path,
        sqlite_path=sqlite_path,
        dump_format="archive" if isinstance(source, ArchiveDump) else "plain",
    )

    progress = None
    console = None
    if show_progress:
        from rich.console import Console
        from rich.progress import (
            BarColumn,
            Progress,
            SpinnerColumn,
            TextColumn,
            TimeElapsedColumn,
        )

        console = Console()
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}[/bold]"),
            BarColumn(bar_width=None),
            TextColumn("{task.completed:,}"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        console.print(f"[dim]Reading {pg_dump_path}...[/dim]")

    text = read_dump_text(source)
    try:
        items = parse_statements(text, inline_copy_data=isinstance(source, PlainDump))
    except ConversionError as exc:
        exc.add_note(f"while parsing dump '{pg_dump_path}'")
        raise
    del text

    tables, copies, unsupported = split_statements(items)
    report.statements_skipped = len(unsupported)
    logger.debug(
        "Dump has %d tables, %d COPY statements, %d unsupported statements",
        len(tables),
        len(copies),
        len(unsupported),
    )

    conn = sqlite3.connect(sqlite_path, isolation_level=None)
    try:
        if progress is not None:
            progress.start()
            schema_task = progress.add_task("Create schema", total=len(tables))

        create_schema(conn, tables, report=report)
        if progress is not None:
            progress.update(schema_task, completed=len(tables))

        copy_data(
            conn,
            copies,
            source,
            tables=tables,
            report=report,
            progress=progress,
            console=console,
            verbose=verbose,
        )

        if progress is not None:
            progress.stop()
            progress = None

        if console is not None:
            _print_summary(console, report, time.time() - start_time)
            console.print(f"[green]Converted[/green] {pg_dump_path} -> {sqlite_path}")
    finally:
        if progress is not None:
            progress.stop()
        conn.close()

    return report
