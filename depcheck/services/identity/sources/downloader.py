"""Generic HTTP downloader and scoped temporary files."""

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import httpx

from depcheck.exceptions import DownloadFailedError, DownloadNotFoundError

logger = logging.getLogger(__name__)


class Downloader:
    """Fetches remote resources over HTTP(S)."""

    def __init__(self, timeout: float = 30):
        """Initialize downloader.

        Args:
            timeout: Request timeout in seconds
        """
        self.timeout = timeout

    async def fetch(self, url: str) -> bytes:
        """Download a resource.

        Args:
            url: Location of the resource

        Returns:
            The response body

        Raises:
            DownloadNotFoundError: If the server answers 404
            DownloadFailedError: On transport errors or other non-200 answers
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise DownloadFailedError(f"Error downloading {url}: {e}") from e

        if response.status_code == 404:
            raise DownloadNotFoundError(f"Resource not found: {url}")
        if response.status_code != 200:
            raise DownloadFailedError(f"Error downloading {url}: HTTP {response.status_code}")
        return response.content

    async def fetch_file(self, url: str, path: Path) -> None:
        """Download a resource into ``path``.

        Raises:
            DownloadNotFoundError: If the server answers 404
            DownloadFailedError: On transport or write errors
        """
        content = await self.fetch(url)
        try:
            Path(path).write_bytes(content)
        except OSError as e:
            raise DownloadFailedError(f"Unable to write {url} to {path}: {e}") from e


@contextmanager
def temporary_file(
    prefix: str = "tmp",
    suffix: str = "",
    directory: Path | None = None,
) -> Iterator[Path]:
    """Create an empty temporary file and remove it when the block exits.

    Removal is best-effort: a file that cannot be deleted is logged and left
    behind rather than raising over the block's own outcome.
    """
    if directory is not None:
        Path(directory).mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Unable to delete temporary file {path}: {e}")
