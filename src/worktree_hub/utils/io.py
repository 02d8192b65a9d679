"""File helpers for the JSON configuration store.

atomic_write_text() writes through a temporary file in the destination
directory and swaps it into place, so a crash never leaves a half-written
store behind. locked_file() takes a shared flock while reading.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TextIO

logger = logging.getLogger(__name__)


@contextmanager
def locked_file(file_handle: TextIO) -> Iterator[None]:
    """Hold a shared advisory lock on an open file for the duration of the block.

    Filesystems without flock support (some network mounts) raise OSError;
    the block then runs unlocked.
    """
    try:
        fcntl.flock(file_handle, fcntl.LOCK_SH)
        locked = True
    except OSError as e:
        logger.debug(f"Could not lock {getattr(file_handle, 'name', file_handle)}: {e}")
        locked = False

    try:
        yield
    finally:
        if locked:
            fcntl.flock(file_handle, fcntl.LOCK_UN)


def atomic_write_text(path: str | Path, data: str, perms: int = 0o600) -> None:
    """Replace ``path`` with ``data`` atomically and restrict its permissions."""
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            prefix=f".{dest.name}.",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())

        os.chmod(tmp_name, perms)
        os.replace(tmp_name, dest)
        tmp_name = None
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning(f"Could not remove temporary file {tmp_name}")


def read_json(path: str | Path) -> dict[str, Any] | None:
    """Read a JSON object from ``path`` under a shared lock.

    Returns None when the file is missing. Raises ValueError when the file
    exists but does not contain a JSON object.
    """
    source = Path(path)
    if not source.exists():
        return None

    with open(source, encoding="utf-8") as f:
        with locked_file(f):
            data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {source}")
    return data


def write_json(path: str | Path, data: dict[str, Any]) -> None:
    """Serialize ``data`` and write it with atomic_write_text()."""
    atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True, default=str))
