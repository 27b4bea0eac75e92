# ABOUTME: OCFL-style versioned object storage with staged, atomic version commits
# ABOUTME: Deduplicates content by digest and keeps an append-only inventory per object
"""OCFL storage.

Layout follows OCFL 1.0 with the hashed n-tuple storage layout::

    <root>/0=ocfl_1.0
    <root>/ocfl_layout.json
    <root>/abc/def/123/<sha256 of object id>/
        0=ocfl_object_1.0
        inventory.json
        inventory.json.sha512
        v1/inventory.json
        v1/content/<logical path>

A session stages writes outside the object. Committing builds the complete
version directory, renames it into the object root and finally replaces the
root inventory, which is the commit point: until then readers keep seeing
the previous head.
"""

import hashlib
import io
import json
import logging
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO

from foxflow.exceptions import StorageCommitError
from foxflow.utils import (
    atomic_json_write,
    atomic_write,
    copy_with_digests,
    file_lock,
    format_timestamp,
)

logger = logging.getLogger(__name__)

OCFL_VERSION = "ocfl_1.0"
OCFL_OBJECT_VERSION = "ocfl_object_1.0"
INVENTORY_TYPE = "https://ocfl.io/1.0/spec/#inventory"
INVENTORY_FILE = "inventory.json"
CONTENT_DIR = "content"
LAYOUT_EXTENSION = "0004-hashed-n-tuple-storage-layout"


@dataclass
class WriteResult:
    size: int
    digests: dict[str, str]


@dataclass
class _StagedFile:
    path: Path
    digest: str
    size: int


def validate_logical_path(logical_path: str) -> str:
    """Reject absolute paths and paths that escape the object."""
    path = PurePosixPath(logical_path)
    if (
        not logical_path
        or path.is_absolute()
        or "\\" in logical_path
        or any(part in ("", ".", "..") for part in logical_path.split("/"))
    ):
        raise StorageCommitError(f"Invalid logical path: {logical_path!r}")
    return logical_path


class OcflRepository:
    """
    Storage root holding one OCFL object per archive group.

    Args:
        storage_root: Directory of the OCFL storage root (created if missing)
        staging_root: Directory for session staging and lock files
        digest_algorithm: Content addressing algorithm (sha512 or sha256)
        author_name: Commit author recorded on every version
        author_address: Commit author address (a URI)
        version_message: Commit message recorded on every version
    """

    def __init__(
        self,
        storage_root: Path | str,
        staging_root: Path | str | None = None,
        digest_algorithm: str = "sha512",
        author_name: str | None = None,
        author_address: str | None = None,
        version_message: str | None = None,
    ):
        self.storage_root = Path(storage_root)
        self.staging_root = (
            Path(staging_root)
            if staging_root
            else self.storage_root.with_name(self.storage_root.name + "-staging")
        )
        self.digest_algorithm = digest_algorithm
        self.author_name = author_name
        self.author_address = author_address
        self.version_message = version_message
        self._init_storage_root()

    def _init_storage_root(self):
        marker = self.storage_root / f"0={OCFL_VERSION}"
        if self.storage_root.exists() and any(self.storage_root.iterdir()):
            if not marker.exists():
                raise StorageCommitError(
                    f"{self.storage_root} is not empty and is not an OCFL storage root",
                    recovery_hint="Point the target at an empty directory",
                )
            return
        self.storage_root.mkdir(parents=True, exist_ok=True)
        atomic_write(marker, f"{OCFL_VERSION}\n")
        layout = {
            "extension": LAYOUT_EXTENSION,
            "description": "Hashed Truncated N-tuple Trees with sha256, 3 tuples of 3 characters",
        }
        atomic_json_write(self.storage_root / "ocfl_layout.json", layout)
        logger.info(f"Initialized OCFL storage root at {self.storage_root}")

    def object_path(self, object_id: str) -> Path:
        digest = hashlib.sha256(object_id.encode("utf-8")).hexdigest()
        return self.storage_root / digest[0:3] / digest[3:6] / digest[6:9] / digest

    def contains_object(self, object_id: str) -> bool:
        return (self.object_path(object_id) / INVENTORY_FILE).exists()

    def read_inventory(self, object_id: str) -> dict[str, Any] | None:
        """Return the object's current inventory, or None if it has no versions."""
        inventory_path = self.object_path(object_id) / INVENTORY_FILE
        if not inventory_path.exists():
            return None
        with open(inventory_path) as f:
            return json.load(f)

    def list_versions(self, object_id: str) -> list[str]:
        inventory = self.read_inventory(object_id)
        if inventory is None:
            return []
        return sorted(inventory["versions"], key=lambda name: int(name[1:]))

    def logical_state(self, object_id: str, version: str | None = None) -> dict[str, str]:
        """Map of logical path to digest for a version (head by default)."""
        inventory = self.read_inventory(object_id)
        if inventory is None:
            return {}
        version = version or inventory["head"]
        state = inventory["versions"][version]["state"]
        return {path: digest for digest, paths in state.items() for path in paths}

    def read_file(self, object_id: str, logical_path: str, version: str | None = None) -> bytes:
        """
        Read a file as it was in ``version`` (head by default).

        Raises:
            FileNotFoundError: If the path is not part of that version
        """
        state = self.logical_state(object_id, version)
        if logical_path not in state:
            raise FileNotFoundError(f"{logical_path} not in {object_id} {version or 'head'}")
        inventory = self.read_inventory(object_id)
        content_path = inventory["manifest"][state[logical_path]][0]
        return (self.object_path(object_id) / content_path).read_bytes()

    def new_session(self, object_id: str) -> "OcflObjectSession":
        return OcflObjectSession(self, object_id, self.staging_root / uuid.uuid4().hex)

    # Commit

    def _commit(self, session: "OcflObjectSession") -> str:
        object_id = session.object_id
        object_root = self.object_path(object_id)
        lock_name = object_root.name
        with file_lock(self.staging_root / "locks" / lock_name):
            inventory = self.read_inventory(object_id) or self._new_inventory(object_id)
            head = inventory["head"]
            version_name = f"v{int(head[1:]) + 1 if head else 1}"

            state_by_path = self.logical_state(object_id) if head else {}
            for path in session.deleted_paths:
                state_by_path.pop(path, None)
            for path, staged in session.staged_files.items():
                state_by_path[path] = staged.digest

            work_dir = object_root / f".{version_name}-{session.session_id}"
            try:
                object_root.mkdir(parents=True, exist_ok=True)
                marker = object_root / f"0={OCFL_OBJECT_VERSION}"
                if not marker.exists():
                    atomic_write(marker, f"{OCFL_OBJECT_VERSION}\n")
                leftover = object_root / version_name
                if leftover.exists():
                    logger.warning(f"Removing {leftover} left by an interrupted commit")
                    shutil.rmtree(leftover)

                manifest = inventory["manifest"]
                for path, staged in sorted(session.staged_files.items()):
                    if staged.digest in manifest:
                        continue
                    target = work_dir / CONTENT_DIR / path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.move(str(staged.path), target)
                    manifest[staged.digest] = [f"{version_name}/{CONTENT_DIR}/{path}"]

                state: dict[str, list[str]] = {}
                for path, digest in sorted(state_by_path.items()):
                    state.setdefault(digest, []).append(path)
                inventory["versions"][version_name] = {
                    "created": format_timestamp(
                        session.version_created or datetime.now(timezone.utc)
                    ),
                    "message": self.version_message or "",
                    "user": {
                        "name": self.author_name or "",
                        "address": self.author_address or "",
                    },
                    "state": state,
                }
                inventory["head"] = version_name

                data = (json.dumps(inventory, indent=2, sort_keys=True) + "\n").encode("utf-8")
                sidecar = f"{hashlib.new(self.digest_algorithm, data).hexdigest()}  {INVENTORY_FILE}\n"
                work_dir.mkdir(parents=True, exist_ok=True)
                (work_dir / INVENTORY_FILE).write_bytes(data)
                (work_dir / f"{INVENTORY_FILE}.{self.digest_algorithm}").write_text(sidecar)

                work_dir.rename(object_root / version_name)
                atomic_write(object_root / INVENTORY_FILE, data)
                atomic_write(object_root / f"{INVENTORY_FILE}.{self.digest_algorithm}", sidecar)
            except OSError as e:
                if work_dir.exists():
                    shutil.rmtree(work_dir, ignore_errors=True)
                raise StorageCommitError(
                    f"Failed to commit {version_name} of {object_id}: {e}",
                    recovery_hint="Earlier versions of the object are unaffected",
                ) from e

        logger.debug(f"Committed {object_id} {version_name}")
        return version_name

    def _new_inventory(self, object_id: str) -> dict[str, Any]:
        return {
            "id": object_id,
            "type": INVENTORY_TYPE,
            "digestAlgorithm": self.digest_algorithm,
            "head": "",
            "contentDirectory": CONTENT_DIR,
            "manifest": {},
            "versions": {},
        }


class OcflObjectSession:
    """
    One pending version of one object.

    Writes are staged until ``commit()``; ``abort()`` discards them. A
    closed session refuses further use.
    """

    def __init__(self, repository: OcflRepository, object_id: str, staging_dir: Path):
        self.repository = repository
        self.object_id = object_id
        self.staging_dir = staging_dir
        self.session_id = staging_dir.name
        self.version_created: datetime | None = None
        self.staged_files: dict[str, _StagedFile] = {}
        self.deleted_paths: set[str] = set()
        self._counter = 0
        self._open = True
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.abort()

    @property
    def is_open(self) -> bool:
        return self._open

    def _enforce_open(self):
        if not self._open:
            raise StorageCommitError(f"Session for {self.object_id} is closed")

    def write_stream(
        self, logical_path: str, stream: BinaryIO, algorithms: tuple[str, ...] = ()
    ) -> WriteResult:
        """
        Stage content for a logical path.

        Args:
            logical_path: Path within the object
            stream: Content to copy
            algorithms: Extra hashlib digests to compute while copying

        Returns:
            Size and digests of the staged content
        """
        self._enforce_open()
        validate_logical_path(logical_path)
        self._counter += 1
        target = self.staging_dir / f"{self._counter:06d}"
        algorithm = self.repository.digest_algorithm
        with open(target, "wb") as out:
            size, digests = copy_with_digests(stream, out, (algorithm, *algorithms))

        previous = self.staged_files.pop(logical_path, None)
        if previous is not None:
            previous.path.unlink(missing_ok=True)
        self.staged_files[logical_path] = _StagedFile(target, digests[algorithm], size)
        self.deleted_paths.discard(logical_path)
        return WriteResult(size=size, digests=digests)

    def write_bytes(self, logical_path: str, data: bytes) -> WriteResult:
        return self.write_stream(logical_path, io.BytesIO(data))

    def delete(self, logical_path: str) -> None:
        self._enforce_open()
        staged = self.staged_files.pop(logical_path, None)
        if staged is not None:
            staged.path.unlink(missing_ok=True)
        self.deleted_paths.add(logical_path)

    def commit(self) -> str:
        """Commit the staged changes as the object's next version."""
        self._enforce_open()
        try:
            return self.repository._commit(self)
        finally:
            self._close()

    def abort(self) -> None:
        if self._open:
            logger.debug(f"Aborting session for {self.object_id}")
            self._close()

    def _close(self):
        self._open = False
        shutil.rmtree(self.staging_dir, ignore_errors=True)
