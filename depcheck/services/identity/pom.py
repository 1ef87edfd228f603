"""Maven POM parsing.

Reads the subset of a project descriptor used for identity analysis:
coordinates, name, description, organization, licenses and the optional
parent reference. Only the document itself is read; the parent POM is never
fetched, its coordinates are used for fallback only.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

from depcheck.exceptions import PomParseError

logger = logging.getLogger(__name__)


@dataclass
class ParentReference:
    """Coordinates of a POM's parent document."""
    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None


@dataclass
class License:
    """A license entry declared in a POM."""
    name: str | None = None
    url: str | None = None


@dataclass
class ProjectDescriptor:
    """Parsed project metadata for a published artifact."""
    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    name: str | None = None
    description: str | None = None
    organization_name: str | None = None
    parent: ParentReference | None = None
    licenses: list[License] = field(default_factory=list)


def _local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    for child in element:
        if isinstance(child.tag, str) and _local_name(child.tag) == name:
            return child
    return None


def _children(element: ET.Element | None, name: str) -> list[ET.Element]:
    if element is None:
        return []
    return [
        child for child in element
        if isinstance(child.tag, str) and _local_name(child.tag) == name
    ]


def _text(element: ET.Element | None, name: str) -> str | None:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def parse_pom(content: bytes | str) -> ProjectDescriptor:
    """Parse POM content into a ProjectDescriptor.

    Args:
        content: Raw POM document

    Returns:
        Parsed descriptor

    Raises:
        PomParseError: If the document is not well-formed XML or is not a
            Maven project descriptor
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise PomParseError(f"Malformed POM document: {e}") from e

    if _local_name(root.tag) != "project":
        raise PomParseError(
            f"Unexpected root element '{_local_name(root.tag)}'; expected 'project'"
        )

    parent = None
    parent_element = _child(root, "parent")
    if parent_element is not None:
        parent = ParentReference(
            group_id=_text(parent_element, "groupId"),
            artifact_id=_text(parent_element, "artifactId"),
            version=_text(parent_element, "version"),
        )

    licenses = [
        License(name=_text(lic, "name"), url=_text(lic, "url"))
        for lic in _children(_child(root, "licenses"), "license")
    ]

    return ProjectDescriptor(
        group_id=_text(root, "groupId"),
        artifact_id=_text(root, "artifactId"),
        version=_text(root, "version"),
        name=_text(root, "name"),
        description=_text(root, "description"),
        organization_name=_text(_child(root, "organization"), "name"),
        parent=parent,
        licenses=licenses,
    )


def read_pom(pom_file: Path) -> ProjectDescriptor:
    """Read and parse a POM file from disk.

    Raises:
        PomParseError: If the file cannot be read or parsed
    """
    try:
        content = Path(pom_file).read_bytes()
    except OSError as e:
        raise PomParseError(f"Unable to read POM file {pom_file}: {e}") from e
    logger.debug(f"Parsing POM file {pom_file}")
    return parse_pom(content)
