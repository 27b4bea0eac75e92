# ABOUTME: Lazy content accessors over memory, files and URLs for datastream bytes
# ABOUTME: Includes the requests-based URL fetcher used for external content
"""Content accessors.

Every datastream version carries exactly one accessor. Nothing is read until
``open()`` is called, and each call returns a fresh binary stream.
"""

import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Protocol

import requests

from foxflow.exceptions import ContentUnavailableError, FetchError

logger = logging.getLogger(__name__)


class ContentAccessor(ABC):
    """Lazy source of the bytes behind one datastream version."""

    @abstractmethod
    def open(self) -> BinaryIO:
        """Open a new stream over the content.

        Raises:
            ContentUnavailableError: If the backing resource no longer exists
        """


class MemoryContent(ContentAccessor):
    """Content held in memory, used for inline XML."""

    def __init__(self, data: bytes):
        self.data = data

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)

    def __repr__(self):
        return f"MemoryContent({len(self.data)} bytes)"


class FileContent(ContentAccessor):
    """Content backed by a file on disk (decoded temp files and resolved datastreams)."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except FileNotFoundError as e:
            raise ContentUnavailableError(
                f"Content file {self.path} is not available",
                recovery_hint="Temporary decoded content is removed once its object is processed",
            ) from e

    def __repr__(self):
        return f"FileContent({self.path})"


class URLFetcher(Protocol):
    def fetch(self, url: str) -> BinaryIO: ...


class URLContent(ContentAccessor):
    """Content hosted at a URL; fetched only when opened."""

    def __init__(self, url: str, fetcher: URLFetcher | None = None):
        self.url = url
        self.fetcher = fetcher

    def open(self) -> BinaryIO:
        if self.fetcher is None:
            raise ContentUnavailableError(
                f"No URL fetcher configured to retrieve {self.url}",
                recovery_hint="Pass an HttpURLFetcher to the decoder",
            )
        return self.fetcher.fetch(self.url)

    def __repr__(self):
        return f"URLContent({self.url})"


class HttpURLFetcher:
    """Fetch external content over HTTP(S) with requests, streaming the body."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 60.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str) -> BinaryIO:
        """
        Open a streamed response body.

        Args:
            url: Absolute http(s) URL

        Returns:
            File-like object over the decoded response body

        Raises:
            ContentUnavailableError: If the server reports the resource missing
            FetchError: For connection problems and other HTTP failures
        """
        logger.debug(f"Fetching {url}")
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        if response.status_code in (404, 410):
            response.close()
            raise ContentUnavailableError(f"{url} returned HTTP {response.status_code}")
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            response.close()
            raise FetchError(
                f"Failed to fetch {url}: {e}",
                recovery_hint="Check that the external host is reachable",
            ) from e

        # Let the raw stream undo transfer encodings such as gzip
        response.raw.decode_content = True
        return response.raw
