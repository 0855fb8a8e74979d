import os
import sys
import pytest

from loglines.store import LineStore
from loglines.storage import StorageRegistry
from loglines.errors import LineIndexOutOfBounds, LineReadError, LineDecodeError, LineStoreError

from test_scanner import CASES


def check_round_trip(path, lines):
    with LineStore(path) as store:
        assert store.length() == len(lines), "counted lines in file"
        assert len(store) == len(lines)
        for i, line in enumerate(lines):
            assert store.text(i) == line
        with pytest.raises(LineIndexOutOfBounds):
            store.text(len(lines) + 1)


@pytest.mark.parametrize("lines", CASES.values(), ids=list(CASES))
def test_round_trip(write_log, lines):
    check_round_trip(write_log(lines), lines)


def test_offset(write_log):
    path = write_log(["1\n", "2\n", "3\n", "4\n", "5\n"])
    with LineStore(path) as store:
        assert store.byte_offset(4) == 8
        assert store.text(4) == "5\n"
        assert store.total_length == 10


def test_empty_file(write_log):
    with LineStore(write_log([])) as store:
        assert len(store) == 0
        assert store.total_length == 0
        with pytest.raises(LineIndexOutOfBounds):
            store.text(0)
        assert list(store) == []


def test_out_of_bounds_at_length(write_log):
    with LineStore(write_log(["1\n", "5"])) as store:
        with pytest.raises(LineIndexOutOfBounds) as exc:
            store.text(store.length())
        assert exc.value.index == 2
        assert exc.value.line_count == 2
        assert str(exc.value) == "index 2 in file of only 2 lines"

        with pytest.raises(LineIndexOutOfBounds):
            store.byte_offset(store.length())
        with pytest.raises(IndexError):
            store.byte_offset(-1)


def test_text_is_cached(write_log):
    path = write_log(["alpha\n", "beta\n"])
    with LineStore(path) as store:
        assert not store.is_cached(1)
        first = store.text(1)
        assert store.is_cached(1)
        assert not store.is_cached(0)
        assert store.text(1) is first


@pytest.mark.skipif(sys.platform == "win32", reason="open files cannot be removed on Windows")
def test_cached_line_survives_file_removal(write_log):
    path = write_log(["alpha\n", "beta\n"])
    with LineStore(path) as store:
        store.text(0)
        os.remove(path)
        # 已缓存的行不再需要 I/O
        assert store.text(0) == "alpha\n"
        assert store.is_cached(0)


def test_cached_line_survives_close(write_log):
    store = LineStore(write_log(["alpha\n", "beta\n"]))
    store.text(0)
    store.close()
    assert store.text(0) == "alpha\n"
    with pytest.raises(LineReadError, match="closed"):
        store.text(1)


def test_construction_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        LineStore(str(tmp_path / "missing.log"))


def test_decode_error_not_cached(write_log):
    path = write_log([b"ok\n", b"\xff\xfe\n", b"fine"])
    with LineStore(path) as store:
        assert len(store) == 3
        with pytest.raises(LineDecodeError) as exc:
            store.text(1)
        assert isinstance(exc.value, ValueError)
        assert exc.value.offset == 3
        assert not store.is_cached(1)
        with pytest.raises(LineDecodeError):
            store.text(1)
        assert store.text(2) == "fine"


def test_truncated_file_read_error_is_retried(write_log):
    path = write_log(["first\n", "second\n", "third\n"])
    with LineStore(path) as store:
        assert store.text(0) == "first\n"
        with open(path, "r+b") as f:
            f.truncate(8)
        with pytest.raises(LineReadError) as exc:
            store.text(2)
        assert isinstance(exc.value, OSError)
        assert not store.is_cached(2)
        assert store.text(0) == "first\n"

        # 恢复文件内容后，下一次调用重新读取
        with open(path, "wb") as f:
            f.write(b"first\nsecond\nthird\n")
        assert store.text(2) == "third\n"


def test_span_and_read_lines(write_log):
    path = write_log(["a\r\n", "bb\n", "ccc"])
    with LineStore(path) as store:
        assert store.span(0) == (0, 3)
        assert store.span(2) == (6, 9)
        assert store.read_lines(1, 10) == ["bb\n", "ccc"]
        assert store.read_lines(3, 5) == []
        with pytest.raises(LineIndexOutOfBounds):
            store.read_lines(-1, 2)


def test_sequence_protocol(write_log):
    lines = ["x\n", "y\n", "z"]
    with LineStore(write_log(lines)) as store:
        assert store[-1] == "z"
        assert store[0:2] == ["x\n", "y\n"]
        assert list(store) == lines
        with pytest.raises(IndexError):
            store[-4]


def test_closed_store(write_log):
    store = LineStore(write_log(["x\n"]))
    store.close()
    assert store.closed
    with pytest.raises(LineStoreError):
        store.text(0)


def test_small_buffer(write_log):
    lines = ["12345\r", "x\n", "abc\r\n", "\n\r", "tail"]
    with LineStore(write_log(lines), buffer_size=3) as store:
        assert list(store) == lines


def test_unicode_content(write_log):
    lines = ["日志 第一行\n", "naïve café\r\n", "🙂"]
    with LineStore(write_log(lines)) as store:
        assert list(store) == lines
        assert store.byte_offset(1) == len("日志 第一行\n".encode("utf-8"))


def test_memory_storage():
    registry = StorageRegistry()
    provider = registry.get_provider("mem://app.log")
    provider.put("mem://app.log", b"one\ntwo\n")
    with LineStore("mem://app.log", registry=registry) as store:
        assert store.name == "app.log"
        assert list(store) == ["one\n", "two\n"]

    with pytest.raises(FileNotFoundError):
        LineStore("mem://other.log", registry=registry)


def test_file_uri(write_log):
    path = write_log(["1\n", "2"])
    with LineStore("file://" + path) as store:
        assert list(store) == ["1\n", "2"]
        assert store.name == os.path.basename(path)
