"""Maven Central identity analyzer.

Locates a dependency's coordinates by searching Maven Central for the SHA-1
digest of its binary:

    1. **Digest lookup**: the digest is searched on Central. A single match is
       recorded at HIGHEST confidence; when several artifacts share the
       digest every one of them is recorded at HIGH.

    2. **POM analysis**: for each match with a POM on Central, the POM is
       downloaded to a temporary file and its evidence extracted, unless the
       dependency already carries POM-sourced vendor evidence (for example
       from a POM embedded in the archive).

A connection failure on the search itself disables the analyzer for the
rest of the run; the state belongs to the analyzer instance.
"""

import logging

from depcheck.config import Settings, get_settings
from depcheck.exceptions import (
    ArtifactNotFoundError,
    CentralSearchError,
    DownloadError,
    InvalidDigestError,
)
from depcheck.services.identity.base_analyzer import BaseAnalyzer
from depcheck.services.identity.models import Confidence, Dependency, MavenArtifact
from depcheck.services.identity.pom_extractor import POM_SOURCE, analyze_pom_file
from depcheck.services.identity.sources.central_client import CentralSearch
from depcheck.services.identity.sources.downloader import Downloader, temporary_file

logger = logging.getLogger(__name__)

CENTRAL_SOURCE = "central"


class CentralAnalyzer(BaseAnalyzer):
    """Identifies dependencies by looking up their SHA-1 on Maven Central."""

    name = "Central Analyzer"
    description = "Resolves artifact coordinates from Maven Central by SHA-1"
    supported_extensions = frozenset({"jar"})

    def __init__(
        self,
        settings: Settings | None = None,
        searcher: CentralSearch | None = None,
        downloader: Downloader | None = None,
    ):
        """Initialize the analyzer.

        Args:
            settings: Settings to use (defaults to the cached settings)
            searcher: Central search client (built from settings if omitted)
            downloader: POM downloader (built from settings if omitted)
        """
        self.settings = settings or get_settings()
        self.enabled = self.settings.central_enabled
        self.searcher = searcher or CentralSearch(
            search_url=self.settings.central_url,
            content_url=self.settings.central_content_url,
            timeout=self.settings.central_timeout_seconds,
        )
        self.downloader = downloader or Downloader(timeout=self.settings.central_timeout_seconds)
        self.temp_directory = self.settings.temp_directory
        self._error_flag = False

        if self.enabled:
            logger.debug(f"Central analyzer URL: {self.searcher.search_url}")
        else:
            logger.info("Central analyzer disabled")

    @property
    def is_enabled(self) -> bool:
        return self.enabled

    @property
    def disabled(self) -> bool:
        """Whether a connection failure has disabled the analyzer for this run."""
        return self._error_flag

    async def analyze(self, dependency: Dependency) -> None:
        """Search Central for the dependency and record what is found.

        Args:
            dependency: Dependency to analyze

        Raises:
            PomParseError: If a downloaded POM is malformed
        """
        if self._error_flag or not self.enabled:
            return
        if not self.supports(dependency):
            logger.debug(f"Central analyzer skipping unsupported file {dependency.display_name}")
            return

        try:
            artifacts = await self.searcher.search_sha1(dependency.sha1sum)
        except InvalidDigestError:
            logger.info(f"Invalid SHA1 hash on {dependency.display_name}")
            return
        except ArtifactNotFoundError:
            logger.debug(f"Artifact not found in repository: '{dependency.display_name}'")
            return
        except CentralSearchError as e:
            logger.debug("Could not connect to Central search", exc_info=True)
            logger.warning(f"Central search failed ({e}); disabling the Central analyzer")
            self._error_flag = True
            return

        confidence = Confidence.HIGH if len(artifacts) > 1 else Confidence.HIGHEST
        for artifact in artifacts:
            logger.debug(
                f"Central analyzer found artifact ({artifact}) for dependency "
                f"({dependency.display_name})"
            )
            dependency.add_as_evidence(CENTRAL_SOURCE, artifact, confidence)

            if dependency.vendor_evidence.has_source(POM_SOURCE):
                logger.debug(f"POM evidence already present for {dependency.display_name}")
                continue
            if artifact.pom_url:
                await self._analyze_remote_pom(dependency, artifact)

    async def _analyze_remote_pom(self, dependency: Dependency, artifact: MavenArtifact) -> None:
        """Download an artifact's POM and extract its evidence."""
        with temporary_file(prefix="pom", suffix=".xml", directory=self.temp_directory) as pom_file:
            try:
                logger.debug(f"Downloading {artifact.pom_url}")
                await self.downloader.fetch_file(artifact.pom_url, pom_file)
            except DownloadError as e:
                logger.warning(
                    f"Unable to download pom.xml for {dependency.display_name} from Central; "
                    f"this could result in undetected CPE/CVEs."
                )
                logger.debug(f"Download of {artifact.pom_url} failed: {e}")
                return
            analyze_pom_file(dependency, pom_file)

    def close(self) -> None:
        """Report whether the analyzer was disabled during the run."""
        if self._error_flag:
            logger.warning(
                "The Central analyzer was disabled during this run after a connection "
                "failure; dependencies analyzed afterwards have no Central evidence"
            )
