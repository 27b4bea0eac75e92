# ABOUTME: Internal content id resolvers for native FOXML datastream stores
# ABOUTME: Indexes Akubra and legacy datastream directories in sqlite for id lookups

import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import unquote

from foxflow.content import ContentAccessor, FileContent
from foxflow.exceptions import UnresolvableIDError

logger = logging.getLogger(__name__)

FEDORA_PREFIX = "info:fedora/"


class InternalIDResolver(ABC):
    """Maps a FOXML internal content id (pid+DSID+DSID.0) to its content."""

    @abstractmethod
    def resolve(self, internal_id: str) -> ContentAccessor:
        """
        Find the content for an internal id.

        Raises:
            UnresolvableIDError: If zero or more than one stored file matches
        """


class DirectoryScanningIDResolver(InternalIDResolver):
    """
    Resolver backed by an sqlite index of a datastream directory.

    The index is built on first use and reused on later runs when
    ``index_dir`` points at a persistent directory.

    Database location: index_dir/datastream_index.db
    """

    def __init__(self, datastream_dir: Path | str, index_dir: Path | str | None = None):
        self.datastream_dir = Path(datastream_dir)
        self._temp_index: tempfile.TemporaryDirectory | None = None
        if index_dir is None:
            self._temp_index = tempfile.TemporaryDirectory(prefix="foxflow-index-")
            index_dir = self._temp_index.name
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.index_dir / "datastream_index.db"
        self._init_database()
        if self.count() == 0:
            self.index_datastreams()
        else:
            logger.info(f"Reusing datastream index at {self.db_path}")

    def _init_database(self):
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS datastreams (
                    internal_id TEXT NOT NULL,
                    path TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_internal_id ON datastreams(internal_id)"
            )
            conn.commit()

    @contextmanager
    def get_connection(self):
        """Get database connection, rolling back on error."""
        conn = sqlite3.connect(str(self.db_path))
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def count(self) -> int:
        with self.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM datastreams").fetchone()[0]

    def index_datastreams(self) -> int:
        """
        Walk the datastream directory and record every file's internal id.

        Returns:
            Number of files indexed
        """
        logger.info(f"Indexing datastreams in {self.datastream_dir}")
        rows = []
        for dirpath, dirnames, filenames in os.walk(self.datastream_dir):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                path = Path(dirpath) / filename
                internal_id = self.internal_id_for_file(path)
                if internal_id:
                    rows.append((internal_id, str(path)))

        with self.get_connection() as conn:
            conn.executemany("INSERT INTO datastreams (internal_id, path) VALUES (?, ?)", rows)
            conn.commit()
        logger.info(f"Indexed {len(rows)} datastream files")
        return len(rows)

    @abstractmethod
    def internal_id_for_file(self, path: Path) -> str | None:
        """Derive the internal id stored in FOXML for a datastream file."""

    def resolve(self, internal_id: str) -> ContentAccessor:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT path FROM datastreams WHERE internal_id = ?", (internal_id,)
            ).fetchall()
        if len(rows) != 1:
            raise UnresolvableIDError(
                f"Internal id {internal_id} matched {len(rows)} datastream files",
                recovery_hint=f"Check the datastream directory {self.datastream_dir}",
            )
        return FileContent(rows[0][0])

    def close(self) -> None:
        if self._temp_index is not None:
            self._temp_index.cleanup()
            self._temp_index = None


class AkubraFSIDResolver(DirectoryScanningIDResolver):
    """
    Resolver for Akubra low-level storage.

    Akubra file names are URL-encoded ``info:fedora/pid/DSID/DSID.0`` URIs.
    """

    def internal_id_for_file(self, path: Path) -> str | None:
        decoded = unquote(path.name)
        if not decoded.startswith(FEDORA_PREFIX):
            logger.warning(f"Skipping {path}: not an Akubra datastream file")
            return None
        return decoded[len(FEDORA_PREFIX):].replace("/", "+")


class LegacyFSIDResolver(DirectoryScanningIDResolver):
    """Resolver for pre-Akubra storage, where ``pid:1`` is stored as ``pid_1``."""

    def internal_id_for_file(self, path: Path) -> str | None:
        return path.name.replace("_", ":", 1)
