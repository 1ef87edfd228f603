"""Maven Central search API client.

Looks up artifacts by the SHA-1 digest of their binary. An empty result is a
not-found condition; transport problems and unexpected responses are
reported separately so callers can tell the two apart.
"""

import logging
import re
from typing import Any

import httpx

from depcheck.exceptions import (
    ArtifactNotFoundError,
    CentralSearchError,
    InvalidDigestError,
)
from depcheck.services.identity.models import MavenArtifact

logger = logging.getLogger(__name__)

CENTRAL_SEARCH_URL = "https://search.maven.org/solrsearch/select"
CENTRAL_CONTENT_URL = "https://search.maven.org/remotecontent"

SHA1_PATTERN = re.compile(r"^[0-9a-fA-F]{40}$")


def is_valid_sha1(sha1: str | None) -> bool:
    """Check that a digest is a 40 character hexadecimal SHA-1."""
    return bool(sha1) and SHA1_PATTERN.match(sha1) is not None


class CentralSearch:
    """Client for the Maven Central search index."""

    def __init__(
        self,
        search_url: str = CENTRAL_SEARCH_URL,
        content_url: str = CENTRAL_CONTENT_URL,
        timeout: float = 30,
    ):
        """Initialize Central client.

        Args:
            search_url: Solr search endpoint
            content_url: Content endpoint used to build download locations
            timeout: Request timeout in seconds
        """
        self.search_url = search_url
        self.content_url = content_url
        self.timeout = timeout

    async def search_sha1(self, sha1: str) -> list[MavenArtifact]:
        """Find the artifacts whose binary has the given SHA-1 digest.

        Args:
            sha1: SHA-1 digest of the artifact

        Returns:
            Matching artifacts, in the order returned by the index

        Raises:
            InvalidDigestError: If ``sha1`` is not a valid SHA-1 digest
            ArtifactNotFoundError: If the index has no match
            CentralSearchError: If the index cannot be queried
        """
        if not is_valid_sha1(sha1):
            raise InvalidDigestError(f"Invalid SHA1 hash: {sha1!r}")

        params = {"q": f'1:"{sha1.lower()}"', "wt": "json"}
        logger.debug(f"Searching Central for {sha1}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.search_url, params=params)
        except httpx.HTTPError as e:
            raise CentralSearchError(f"Could not connect to Central search: {e}") from e

        if response.status_code != 200:
            raise CentralSearchError(
                f"Central search returned HTTP {response.status_code} for {sha1}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CentralSearchError(f"Invalid response from Central search: {e}") from e

        artifacts = self._parse_response(data)
        if not artifacts:
            raise ArtifactNotFoundError(f"No artifact found for SHA1 {sha1}")
        return artifacts

    def _parse_response(self, data: Any) -> list[MavenArtifact]:
        """Parse a Solr JSON response into artifacts.

        Raises:
            CentralSearchError: If the payload does not have the Solr
                ``{"response": {"docs": [...]}}`` shape
        """
        if not isinstance(data, dict) or not isinstance(data.get("response"), dict):
            raise CentralSearchError("Malformed Central search response: missing 'response' object")
        docs = data["response"].get("docs") or []
        if not isinstance(docs, list):
            raise CentralSearchError("Malformed Central search response: 'docs' is not a list")

        artifacts = []
        for doc in docs:
            if not isinstance(doc, dict):
                logger.debug(f"Skipping malformed Central result: {doc!r}")
                continue
            group_id = doc.get("g")
            artifact_id = doc.get("a")
            version = doc.get("v")
            if not all(isinstance(value, str) and value for value in (group_id, artifact_id, version)):
                logger.debug(f"Skipping incomplete Central result: {doc}")
                continue

            extensions = doc.get("ec") or []
            if not isinstance(extensions, list):
                extensions = []
            pom_url = None
            artifact_url = None
            if ".pom" in extensions:
                pom_url = self.build_content_url(group_id, artifact_id, version, "pom")
            if ".jar" in extensions:
                artifact_url = self.build_content_url(group_id, artifact_id, version, "jar")

            artifacts.append(MavenArtifact(
                group_id=group_id,
                artifact_id=artifact_id,
                version=version,
                pom_url=pom_url,
                artifact_url=artifact_url,
            ))

        return artifacts

    def build_content_url(
        self,
        group_id: str,
        artifact_id: str,
        version: str,
        packaging: str,
    ) -> str:
        """Build the download location of an artifact file on Central."""
        group_path = group_id.replace(".", "/")
        return (
            f"{self.content_url}?filepath={group_path}/{artifact_id}/{version}/"
            f"{artifact_id}-{version}.{packaging}"
        )
