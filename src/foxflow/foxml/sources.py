# ABOUTME: Object sources that walk directories of FOXML files
# ABOUTME: Yields one decoder per file for native storage and archive exports

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from foxflow.content import URLFetcher
from foxflow.foxml.decoder import FoxmlDecoder
from foxflow.foxml.resolvers import InternalIDResolver

logger = logging.getLogger(__name__)


def iter_foxml_files(root: Path | str) -> Iterator[Path]:
    """Depth-first walk of ``root`` in sorted order, skipping dot-files."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if not filename.startswith("."):
                yield Path(dirpath) / filename


class FoxmlDirectoryObjectSource:
    """
    FOXML files under a directory, one object per file.

    Iteration order is stable across runs, which resume bookkeeping relies on.
    """

    def __init__(
        self,
        objects_dir: Path | str,
        resolver: InternalIDResolver | None = None,
        fetcher: URLFetcher | None = None,
        local_server: str = "localhost:8080",
        validate_checksums: bool = True,
    ):
        self.objects_dir = Path(objects_dir)
        self.resolver = resolver
        self.fetcher = fetcher
        self.local_server = local_server
        self.validate_checksums = validate_checksums

    def paths(self) -> Iterator[Path]:
        return iter_foxml_files(self.objects_dir)

    def open(self, path: Path) -> FoxmlDecoder:
        """Open a decoder for one file; the root element is read immediately."""
        return FoxmlDecoder.from_path(
            path,
            resolver=self.resolver,
            fetcher=self.fetcher,
            local_server=self.local_server,
            validate_checksums=self.validate_checksums,
        )

    def __iter__(self) -> Iterator[FoxmlDecoder]:
        for path in self.paths():
            yield self.open(path)


class NativeFoxmlDirectoryObjectSource(FoxmlDirectoryObjectSource):
    """Objects from a repository's object store; managed content is resolved by id."""

    def __init__(self, objects_dir, resolver: InternalIDResolver, **kwargs):
        super().__init__(objects_dir, resolver=resolver, **kwargs)


class ArchiveExportedFoxmlDirectoryObjectSource(FoxmlDirectoryObjectSource):
    """Objects exported in archive context; managed content is inline base64."""

    def __init__(self, exported_dir, **kwargs):
        super().__init__(exported_dir, resolver=None, **kwargs)
