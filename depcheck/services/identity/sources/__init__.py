"""Remote identity sources."""

from depcheck.services.identity.sources.central_client import CentralSearch
from depcheck.services.identity.sources.downloader import Downloader

__all__ = ["CentralSearch", "Downloader"]
