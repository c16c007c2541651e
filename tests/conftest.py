import gzip
import io
import tarfile

import pytest


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.sqlite")


@pytest.fixture
def write_dump(tmp_path):
    """Write dump text to a .sql (or gzipped .sql.gz) file and return its path."""

    def _write(content: str, name: str = "dump.sql") -> str:
        path = tmp_path / name
        data = content.encode("utf-8")
        if name.endswith(".gz"):
            with gzip.open(path, "wb") as f:
                f.write(data)
        else:
            path.write_bytes(data)
        return str(path)

    return _write


@pytest.fixture
def write_archive(tmp_path):
    """Write a pg_dump -Ft style tar from {member name: text}."""

    def _write(members: dict, name: str = "dump.tar") -> str:
        path = tmp_path / name
        with tarfile.open(path, "w") as tar:
            for member, content in members.items():
                data = content.encode("utf-8")
                info = tarfile.TarInfo(member)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return str(path)

    return _write
