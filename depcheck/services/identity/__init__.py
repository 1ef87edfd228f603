"""Artifact identity analysis.

Builds confidence-weighted vendor, product and version evidence for
dependencies from remote index lookups and project descriptors.
"""

from depcheck.services.identity.central_analyzer import CentralAnalyzer
from depcheck.services.identity.models import (
    Confidence,
    Dependency,
    Evidence,
    EvidenceCollection,
    MavenArtifact,
)
from depcheck.services.identity.pom_extractor import analyze_pom

__all__ = [
    "CentralAnalyzer",
    "Confidence",
    "Dependency",
    "Evidence",
    "EvidenceCollection",
    "MavenArtifact",
    "analyze_pom",
]
