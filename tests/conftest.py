import pytest
import os
import sys
import tempfile

# Add project root and backend to sys.path
project_root = os.path.dirname(os.path.dirname(__file__))
if project_root not in sys.path:
    sys.path.append(project_root)
backend_path = os.path.join(project_root, "backend")
if backend_path not in sys.path:
    sys.path.append(backend_path)

from bridge import FileBridge


@pytest.fixture
def bridge():
    """Provides a clean FileBridge instance."""
    b = FileBridge()
    yield b
    b.close_all()


@pytest.fixture
def write_log(tmp_path):
    """Writes the given segments (str or bytes) to a file and returns its path."""

    def _write(segments, name="test.log"):
        path = tmp_path / name
        data = b"".join(s.encode("utf-8") if isinstance(s, str) else s for s in segments)
        path.write_bytes(data)
        return str(path)

    return _write


@pytest.fixture
def temp_log_file():
    """Creates a temporary log file and returns its path."""
    with tempfile.NamedTemporaryFile(
        mode="wb", suffix=".log", delete=False
    ) as f:
        f.write(b"line 1\nline 2\nline 3\nline 4\nline 5\n")
        path = f.name

    yield path

    if os.path.exists(path):
        os.remove(path)
