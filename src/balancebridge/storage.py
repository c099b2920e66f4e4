"""
Durable file writes for identity and pairing state.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, text: str, mode: int = 0o600) -> None:
    """
    Replace ``path`` with ``text`` so readers see the old or the new file, never a mix.

    The data is fsynced before the rename, so the write survives a crash
    once this returns.

    Raises:
        OSError: If the directory cannot be created or the file written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write(text)
            fp.flush()
            os.fsync(fp.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def remove_file(path: Path) -> bool:
    """Delete ``path`` if present. Returns True if a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
