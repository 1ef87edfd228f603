"""Data models for artifact identity analysis."""

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path


class Confidence(IntEnum):
    """Ordered certainty attached to a piece of evidence."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    HIGHEST = 4


@dataclass(frozen=True)
class Evidence:
    """A single weighted fact about a dependency's identity.

    Equality and hashing use (source, name, value) only, so the same fact
    reached through different inference chains is stored once.
    """
    source: str
    name: str
    value: str
    confidence: Confidence = field(compare=False)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.name, self.value)


class EvidenceCollection:
    """Insertion-ordered, append-only bucket of evidence."""

    def __init__(self):
        self._evidence: dict[tuple[str, str, str], Evidence] = {}

    def add_evidence(
        self,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> None:
        """Add a fact unless the same (source, name, value) is already present.

        Args:
            source: Where the fact came from (e.g. "central", "pom")
            name: Name of the fact (e.g. "groupid")
            value: Observed value
            confidence: Confidence in the fact
        """
        evidence = Evidence(source, name, value, Confidence(confidence))
        self._evidence.setdefault(evidence.key, evidence)

    def __iter__(self) -> Iterator[Evidence]:
        return iter(tuple(self._evidence.values()))

    def __len__(self) -> int:
        return len(self._evidence)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Evidence):
            return item.key in self._evidence
        return False

    def iter_confidence(self, minimum: Confidence) -> Iterator[Evidence]:
        """Iterate facts whose confidence is at least ``minimum``."""
        return (e for e in self if e.confidence >= minimum)

    def get_evidence(
        self,
        source: str | None = None,
        name: str | None = None,
    ) -> tuple[Evidence, ...]:
        """Return facts matching the given source and/or name, in order."""
        return tuple(
            e for e in self
            if (source is None or e.source == source)
            and (name is None or e.name == name)
        )

    def has_source(self, source: str) -> bool:
        """Check whether any fact in the bucket came from ``source``."""
        return any(e.source == source for e in self._evidence.values())

    def __repr__(self) -> str:
        return f"EvidenceCollection({list(self._evidence.values())!r})"


@dataclass
class Identifier:
    """An identifier assigned to a dependency (e.g. maven coordinates)."""
    type: str
    value: str
    url: str | None = None
    confidence: Confidence = Confidence.HIGHEST


@dataclass
class MavenArtifact:
    """A candidate artifact returned by a remote index lookup."""
    group_id: str
    artifact_id: str
    version: str
    pom_url: str | None = None
    artifact_url: str | None = None

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"


@dataclass
class Dependency:
    """A scanned artifact and the identity evidence collected for it."""
    file_name: str
    sha1sum: str | None = None
    md5sum: str | None = None
    file_path: str | None = None
    description: str | None = None
    license: str | None = None
    vendor_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    product_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    version_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    identifiers: list[Identifier] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> "Dependency":
        """Create a dependency for a file, computing its SHA-1 and MD5 digests.

        Args:
            path: Path to the artifact on disk

        Returns:
            Dependency with digests populated
        """
        path = Path(path)
        sha1_hash = hashlib.sha1()
        md5_hash = hashlib.md5()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha1_hash.update(chunk)
                md5_hash.update(chunk)
        return cls(
            file_name=path.name,
            file_path=str(path),
            sha1sum=sha1_hash.hexdigest(),
            md5sum=md5_hash.hexdigest(),
        )

    @property
    def display_name(self) -> str:
        return self.file_name

    @property
    def extension(self) -> str:
        name = self.file_path or self.file_name
        return Path(name).suffix.lower().lstrip(".")

    def add_identifier(
        self,
        type: str,
        value: str,
        url: str | None,
        confidence: Confidence = Confidence.HIGHEST,
    ) -> Identifier:
        """Add an identifier, or upgrade an existing one with the same type/value."""
        for identifier in self.identifiers:
            if identifier.type == type and identifier.value == value:
                identifier.url = url
                identifier.confidence = max(identifier.confidence, confidence)
                return identifier
        identifier = Identifier(type=type, value=value, url=url, confidence=confidence)
        self.identifiers.append(identifier)
        return identifier

    def add_as_evidence(
        self,
        source: str,
        artifact: MavenArtifact,
        confidence: Confidence,
    ) -> None:
        """Record an artifact's coordinates as vendor/product/version evidence.

        The group id maps to vendor, the artifact id to product and the
        version to version. Empty parts are skipped. When the artifact has a
        download location a ``maven`` identifier is added at HIGHEST.
        """
        if artifact.group_id:
            self.vendor_evidence.add_evidence(source, "groupid", artifact.group_id, confidence)
        if artifact.artifact_id:
            self.product_evidence.add_evidence(source, "artifactid", artifact.artifact_id, confidence)
        if artifact.version:
            self.version_evidence.add_evidence(source, "version", artifact.version, confidence)
        if artifact.artifact_url:
            self.add_identifier("maven", str(artifact), artifact.artifact_url, Confidence.HIGHEST)
