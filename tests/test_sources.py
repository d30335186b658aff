import io

import pytest

from bootdisk.sources import DataSource, FileSource


def test_data_source_copy_and_size():
    src = DataSource(b"hello")
    buf = io.BytesIO()
    src.copy_to(buf)
    assert buf.getvalue() == b"hello"
    assert src.size() == 5


def test_file_source_copy_and_size(tmp_path):
    path = tmp_path / "k"
    path.write_bytes(b"abc" * 100)
    src = FileSource(path)
    buf = io.BytesIO()
    src.copy_to(buf)
    assert buf.getvalue() == b"abc" * 100
    assert src.size() == 300


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileSource(tmp_path / "missing").size()


def test_reprs(tmp_path):
    assert repr(DataSource(b"xy")) == "data source: 2 raw bytes "
    assert repr(FileSource(tmp_path)).startswith("data source: File ")