"""Read dump text and stream COPY rows out of plain and tar dumps.

Row data uses the COPY text format: one row per line, fields separated by a
tab, ``\\N`` for NULL and a line holding only ``\\.`` to end the block. Field
contents are passed through verbatim.
"""

from __future__ import annotations

import gzip
import logging
import tarfile
from typing import IO, Iterable, Iterator, assert_never

from .errors import CorruptRowError, DumpReadError, UnsupportedCopySourceError
from .model import (
    ARCHIVE_TOC_MEMBER,
    PATH_PLACEHOLDER,
    ArchiveDump,
    Copy,
    DumpSource,
    PlainDump,
    Row,
)

logger = logging.getLogger(__name__)

NULL_MARKER = "\\N"
END_MARKER = "\\."


def _open_plain(source: PlainDump) -> IO[bytes]:
    if source.compressed:
        return gzip.open(source.path, "rb")
    return open(source.path, "rb")


def _read_archive_member(tar_path: str, name: str) -> bytes:
    with tarfile.open(tar_path, "r:") as tar:
        for candidate in (name, "./" + name):
            try:
                member = tar.getmember(candidate)
            except KeyError:
                continue
            extracted = tar.extractfile(member)
            if extracted is None:
                break
            with extracted:
                return extracted.read()
    raise DumpReadError(f"Archive '{tar_path}' has no member '{name}'")


def read_dump_text(source: DumpSource) -> str:
    """Return the statements text of a dump.

    Undecodable bytes are kept as surrogates so that byte offsets computed
    from the text match the file.
    """
    try:
        match source:
            case PlainDump():
                with _open_plain(source) as f:
                    data = f.read()
            case ArchiveDump():
                data = _read_archive_member(source.path, ARCHIVE_TOC_MEMBER)
            case _:
                assert_never(source)
    except (OSError, tarfile.TarError) as exc:
        raise DumpReadError(f"reading dump file '{source.path}'") from exc
    return data.decode("utf-8", errors="surrogateescape")


def parse_copy_line(line: str, width: int) -> Row:
    """Split one data line (without its line terminator) into a row."""
    fields = line.split("\t")
    if len(fields) != width:
        raise CorruptRowError(
            f"Expected {width} fields but found {len(fields)}: {line[:200]!r}"
        )
    return tuple(None if f == NULL_MARKER else f for f in fields)


def _strip_eol(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def _iter_block(copy: Copy, lines: Iterable[str]) -> Iterator[Row]:
    width = len(copy.columns)
    for n, line in enumerate(lines, start=1):
        if line == END_MARKER:
            return
        try:
            yield parse_copy_line(line, width)
        except CorruptRowError as exc:
            raise CorruptRowError(f"COPY data for '{copy.name}', row {n}: {exc}") from None


def _decode_lines(copy: Copy, raw_lines: Iterable[bytes]) -> Iterator[str]:
    for raw in raw_lines:
        try:
            yield _strip_eol(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise CorruptRowError(f"COPY data for '{copy.name}' is not valid UTF-8") from exc


def _plain_rows(copy: Copy, source: PlainDump) -> Iterator[Row]:
    try:
        with _open_plain(source) as f:
            f.seek(copy.end_offset)
            # rest of the COPY statement line
            f.readline()
            yield from _iter_block(copy, _decode_lines(copy, f))
    except OSError as exc:
        raise DumpReadError(f"reading COPY data for '{copy.name}' from '{source.path}'") from exc


def archive_member_name(copy: Copy) -> str:
    return copy.source.removeprefix(PATH_PLACEHOLDER)


def _archive_rows(copy: Copy, source: ArchiveDump) -> Iterator[Row]:
    member = archive_member_name(copy)
    try:
        data = _read_archive_member(source.path, member)
    except (OSError, tarfile.TarError) as exc:
        raise DumpReadError(f"reading member '{member}' of '{source.path}'") from exc

    lines = data.split(b"\n")
    if lines and lines[-1] == b"":
        lines.pop()
    yield from _iter_block(copy, _decode_lines(copy, lines))


def copy_skip_reason(copy: Copy, source: DumpSource) -> str | None:
    """Why a COPY statement yields no rows for this source, if it is skipped."""
    if isinstance(source, ArchiveDump) and copy.from_stdin:
        return "COPY FROM stdin has no data file in a tar archive"
    return None


def extract_rows(copy: Copy, source: DumpSource) -> Iterator[Row]:
    """Yield the rows of one COPY statement.

    Single pass: the underlying file or archive is opened on first iteration
    and closed when the rows are exhausted or iteration stops early.
    """
    match source:
        case PlainDump():
            if not copy.from_stdin:
                raise UnsupportedCopySourceError(
                    f"COPY into '{copy.name}' reads from '{copy.source}', "
                    "but plain dumps only carry inline (stdin) data"
                )
            yield from _plain_rows(copy, source)
        case ArchiveDump():
            reason = copy_skip_reason(copy, source)
            if reason is not None:
                logger.warning("Skipping COPY into '%s': %s", copy.name, reason)
                return
            yield from _archive_rows(copy, source)
        case _:
            assert_never(source)
