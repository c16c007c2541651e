from __future__ import annotations

import argparse
import logging
import sqlite3
from typing import Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .errors import ConversionError
from .loader import convert_pg_dump_to_sqlite, write_report_json


def format_error_chain(exc: BaseException) -> list[str]:
    """One line per exception in the ``raise ... from`` chain, notes included."""
    lines: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConversionError):
            message = str(current)
        else:
            message = f"{type(current).__name__}: {current}"
        lines.append(message)
        lines.extend(getattr(current, "__notes__", ()))
        current = current.__cause__
    return lines


def _print_error(console: Console, exc: BaseException) -> None:
    first, *rest = format_error_chain(exc)
    console.print(f"[bold red]error:[/bold red] {escape(first)}")
    for line in rest:
        console.print(f"  [red]caused by:[/red] {escape(line)}")


def main(argv: Sequence[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="pgdump2sqlite",
        description="Convert a PostgreSQL dump file into an SQLite database file",
    )
    p.add_argument(
        "pg_dump_path",
        help="Path to the PostgreSQL dump (.sql, .sql.gz or a pg_dump -Ft .tar)",
    )
    p.add_argument("sqlite_path", help="Path to the output SQLite database file")
    p.add_argument(
        "--overwrite",
        "-f",
        action="store_true",
        help="Remove the destination first if it exists",
    )
    p.add_argument(
        "--no-progress", action="store_true", help="Disable rich progress output"
    )
    p.add_argument(
        "--report-json",
        default=None,
        help="Write a JSON conversion report to this path (use '-' for stdout)",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output for debugging",
    )
    args = p.parse_args(argv)

    err_console = Console(stderr=True)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )

    try:
        report = convert_pg_dump_to_sqlite(
            pg_dump_path=args.pg_dump_path,
            sqlite_path=args.sqlite_path,
            overwrite=bool(args.overwrite),
            show_progress=not bool(args.no_progress),
            verbose=bool(args.verbose),
        )
    except (ConversionError, OSError, sqlite3.Error) as exc:
        _print_error(err_console, exc)
        return 1

    if args.report_json:
        write_report_json(report, str(args.report_json))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
