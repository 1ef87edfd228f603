"""Shared description and license extraction for identity analyzers."""

import html
import re

from depcheck.services.identity.models import Confidence, Dependency
from depcheck.services.identity.pom import ProjectDescriptor

HTML_DETECTION_PATTERN = re.compile(r"</?[a-z][a-z0-9]*(?:\s[^>]*)?/?>", re.IGNORECASE)
WHITESPACE_PATTERN = re.compile(r"\s\s+")

# Descriptions longer than this are truncated at the first usage phrase
# found past this offset, since the tail usually names other products.
DESCRIPTION_CUTOFF = 100
USAGE_MARKERS = ("such as ", "like ", "will use ", " uses ")


def strip_html(text: str) -> str:
    """Reduce an HTML fragment to its text content."""
    if not HTML_DETECTION_PATTERN.search(text):
        return text
    stripped = HTML_DETECTION_PATTERN.sub(" ", text)
    return " ".join(html.unescape(stripped).split())


def add_description(
    dependency: Dependency,
    description: str,
    source: str,
    key: str,
) -> str:
    """Record a project description as product and vendor evidence.

    Args:
        dependency: Dependency being analyzed
        description: Raw description text (may contain HTML)
        source: Evidence source (e.g. "pom")
        key: Evidence name (e.g. "description")

    Returns:
        The cleaned description text
    """
    desc = strip_html(description)
    if dependency.description is None:
        dependency.description = desc

    if len(desc) > DESCRIPTION_CUTOFF:
        desc = WHITESPACE_PATTERN.sub(" ", desc)
        lowered = desc.lower()
        positions = [lowered.find(marker, DESCRIPTION_CUTOFF) for marker in USAGE_MARKERS]
        found = [pos for pos in positions if pos >= 0]
        if found:
            desc = desc[:min(found)] + "..."
        dependency.product_evidence.add_evidence(source, key, desc, Confidence.LOW)
        dependency.vendor_evidence.add_evidence(source, key, desc, Confidence.LOW)
    else:
        dependency.product_evidence.add_evidence(source, key, desc, Confidence.MEDIUM)
        dependency.vendor_evidence.add_evidence(source, key, desc, Confidence.MEDIUM)
    return desc


def extract_license(descriptor: ProjectDescriptor, dependency: Dependency) -> None:
    """Set the dependency license from the descriptor's license entries.

    Each license is rendered as ``name: url`` (or whichever part is present)
    and entries are joined with newlines.
    """
    entries = []
    for lic in descriptor.licenses:
        if lic.name and lic.url:
            entry = f"{lic.name}: {lic.url}"
        else:
            entry = lic.name or lic.url
        if not entry:
            continue
        entries.append(strip_html(entry))

    if entries:
        dependency.license = "\n".join(entries)
