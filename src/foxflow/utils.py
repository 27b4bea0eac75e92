# ABOUTME: Common utility functions for atomic file operations, hashing and legacy dates
# ABOUTME: Provides safe writes, file locking, streamed digests and timestamp conversion
"""Utility functions for foxflow"""

import hashlib
import json
import logging
import os
import re
import tempfile
import time
from collections.abc import Iterable
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO

from foxflow.exceptions import StorageCommitError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536

_LEGACY_DATE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$"
)

# Digest names used by FOXML contentDigest TYPE attributes
LEGACY_DIGEST_NAMES = {
    "MD5": "md5",
    "SHA-1": "sha1",
    "SHA-256": "sha256",
    "SHA-384": "sha384",
    "SHA-512": "sha512",
}


def atomic_write(filepath: Path, content: str | bytes) -> None:
    """
    Write file atomically to prevent data corruption.

    Args:
        filepath: Target file path
        content: Content to write

    Raises:
        StorageCommitError: If write fails
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory (for same filesystem)
    temp_fd, temp_path = tempfile.mkstemp(
        dir=filepath.parent, prefix=f".{filepath.name}.", suffix=".tmp"
    )
    mode = "wb" if isinstance(content, bytes) else "w"

    try:
        with os.fdopen(temp_fd, mode) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, filepath)

    except OSError as e:
        with suppress(OSError):
            os.unlink(temp_path)
        raise StorageCommitError(
            f"Failed to write {filepath}: {e}",
            recovery_hint="Check disk space and permissions",
        ) from e


def atomic_json_write(filepath: Path, data: Any, **json_kwargs) -> None:
    """
    Write JSON file atomically.

    Args:
        filepath: Target file path
        data: Data to serialize to JSON
        **json_kwargs: Additional arguments for json.dumps
    """
    json_kwargs.setdefault("indent", 2)
    json_kwargs.setdefault("sort_keys", True)

    atomic_write(filepath, json.dumps(data, **json_kwargs))


@contextmanager
def file_lock(filepath: Path, timeout: float = 30.0):
    """
    Context manager for file locking.

    Args:
        filepath: File to lock
        timeout: Maximum time to wait for lock

    Raises:
        StorageCommitError: If lock cannot be acquired
    """
    lock_path = filepath.with_suffix(filepath.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_file = None
    start_time = time.time()

    try:
        while True:
            try:
                lock_file = open(lock_path, "x")
                break
            except FileExistsError:
                if time.time() - start_time > timeout:
                    raise StorageCommitError(
                        f"Could not acquire lock for {filepath}",
                        recovery_hint="Another process may be writing this object; "
                        f"remove {lock_path} if it is stale",
                    )
                time.sleep(0.1)

        # PID in lock file for debugging
        lock_file.write(str(os.getpid()))
        lock_file.flush()

        yield

    finally:
        if lock_file:
            lock_file.close()
            with suppress(OSError):
                lock_path.unlink()


def copy_with_digests(
    source: BinaryIO, target: BinaryIO, algorithms: Iterable[str]
) -> tuple[int, dict[str, str]]:
    """
    Copy a stream while computing digests of the copied bytes.

    Args:
        source: Stream to read
        target: Stream to write
        algorithms: hashlib algorithm names

    Returns:
        Tuple of (bytes copied, {algorithm: hex digest})
    """
    hashers = {name: hashlib.new(name) for name in dict.fromkeys(algorithms)}
    size = 0
    for chunk in iter(lambda: source.read(CHUNK_SIZE), b""):
        target.write(chunk)
        size += len(chunk)
        for hasher in hashers.values():
            hasher.update(chunk)
    return size, {name: hasher.hexdigest() for name, hasher in hashers.items()}


def hashlib_name(legacy_name: str) -> str | None:
    """Map a FOXML digest TYPE to a hashlib algorithm name, or None if unknown."""
    name = LEGACY_DIGEST_NAMES.get(legacy_name.upper())
    if name is None:
        candidate = legacy_name.lower().replace("-", "")
        if candidate in hashlib.algorithms_available:
            name = candidate
    return name


def parse_legacy_date(value: str) -> datetime:
    """
    Parse a FOXML timestamp such as 2015-01-27T19:07:33.120Z.

    Args:
        value: ISO-8601 timestamp, UTC when no offset is given

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value is not a timestamp
    """
    match = _LEGACY_DATE.match(value.strip())
    if not match:
        raise ValueError(f"Not a timestamp: {value!r}")
    base, fraction, offset = match.groups()
    fraction = (fraction or "")[:6].ljust(6, "0")
    if offset in (None, "Z"):
        offset = "+00:00"
    elif ":" not in offset:
        offset = f"{offset[:3]}:{offset[3:]}"
    return datetime.fromisoformat(f"{base}.{fraction}{offset}")


def epoch_millis(value: str) -> int:
    """Convert a FOXML timestamp string to milliseconds since the epoch."""
    parsed = parse_legacy_date(value)
    delta = parsed - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def state_token(value: str) -> str:
    """Uppercase MD5 hex of a timestamp's epoch milliseconds."""
    return hashlib.md5(str(epoch_millis(value)).encode("utf-8")).hexdigest().upper()


def format_timestamp(value: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
