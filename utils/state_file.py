"""Files the rebalancer leaves behind: one JSON report per failed cycle and an append-only cycle log.

Both writers are safe against a second rebalancer (or the preflight tool)
touching the same paths: reports appear under their final name only once
fully written, and log rows are appended under an exclusive `flock` held on a
`<log>.lock` sidecar. POSIX only.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Iterator

E_FILE_LOCKED = "E_FILE_LOCKED"


class FileLockError(RuntimeError):
    """Raised when the sidecar lock cannot be acquired in time."""

    code = E_FILE_LOCKED


def _make_parent(path: str) -> str:
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    return parent


@contextmanager
def file_lock(target_path: str, *, timeout_seconds: float = 2.0, poll_seconds: float = 0.05) -> Iterator[None]:
    """Hold an exclusive lock on `<target_path>.lock`, polling until `timeout_seconds`."""
    lock_path = f"{target_path}.lock"
    _make_parent(lock_path)
    deadline = time.monotonic() + max(0.05, float(timeout_seconds))
    poll = max(0.01, float(poll_seconds))

    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError as exc:
                if time.monotonic() >= deadline:
                    raise FileLockError(f"{E_FILE_LOCKED}: lock timeout path={target_path}") from exc
                time.sleep(poll)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def atomic_write_json(path: str, payload: Any, *, indent: int = 2) -> None:
    """Write a diagnostics report so readers see either nothing or the whole document."""
    parent = _make_parent(str(path))
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def append_jsonl_locked(path: str, row: dict[str, Any], *, timeout_seconds: float = 2.0) -> None:
    """Append one cycle event as a single JSON line."""
    line = json.dumps(row, ensure_ascii=False, default=str) + "\n"
    with file_lock(path, timeout_seconds=timeout_seconds):
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
