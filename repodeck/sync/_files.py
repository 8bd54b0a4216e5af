"""App-private file helpers shared by the persisted stores."""

from __future__ import annotations

import contextlib
import os
import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path

_PRIVATE_MODE = 0o600


def read_bytes(path: Path) -> bytes | None:
    """Return the file contents, or ``None`` when the file does not exist."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def write_private_bytes(path: Path, payload: bytes) -> None:
    """Atomically replace ``path`` with ``payload``, readable by the owner only.

    The payload is written to a sibling temporary file first so a crash
    mid-write never leaves a truncated document behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _PRIVATE_MODE)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise
    if os.name == "posix":
        os.chmod(path, _PRIVATE_MODE)


def remove_file(path: Path) -> None:
    """Delete ``path`` if it exists."""
    path.unlink(missing_ok=True)
