import sys
from pathlib import Path
from typing import Callable

import pytest


def _add_src_to_path() -> None:
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


_add_src_to_path()

ELF_MAGIC = b"\x7fELF"


@pytest.fixture
def write_binary() -> Callable[..., Path]:
    """Return a helper writing a file of an exact size with a binary header."""

    def _write(path: Path, size: int, magic: bytes = ELF_MAGIC, seed: str = "") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        body = magic + (seed or path.name).encode("utf-8")
        if len(body) < size:
            body += b"\x00" * (size - len(body))
        path.write_bytes(body[:size])
        return path

    return _write
