"""
Crash-safe file writes.

Readers either see the previous file or the complete new one: data goes to a
temp file in the target directory, is fsynced, then renamed over the target.
"""

import json
import os
import tempfile
from pathlib import Path


def write_atomic(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Write bytes to path via temp file + rename, with the given permissions."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".prd-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def dump_json_bytes(data) -> bytes:
    """Indented JSON with a trailing newline, UTF-8 kept readable."""
    return (json.dumps(data, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def write_json_atomic(path: Path, data, mode: int = 0o644) -> None:
    write_atomic(path, dump_json_bytes(data), mode)
