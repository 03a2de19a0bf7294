# tests/conftest.py
import pytest


@pytest.fixture
def write_trace(tmp_path):
    """Write lines to a file under tmp_path and return its path as str."""

    def _write(name, lines):
        path = tmp_path / name
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return str(path)

    return _write
