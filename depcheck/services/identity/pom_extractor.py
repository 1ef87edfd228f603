"""Evidence extraction from Maven project descriptors.

Maps POM coordinates, name and organization onto a dependency's vendor,
product and version evidence. Empty coordinates fall back to the parent
reference's values; parent values that differ from the effective ones are
recorded as separate, weaker ``parent-*`` evidence.
"""

import logging
from pathlib import Path

from depcheck.services.identity.descriptions import add_description, extract_license
from depcheck.services.identity.models import Confidence, Dependency
from depcheck.services.identity.pom import ProjectDescriptor, read_pom

logger = logging.getLogger(__name__)

POM_SOURCE = "pom"

# Group-style prefixes sometimes used in artifact ids ("org.foo").
ARTIFACT_ID_PREFIXES = ("org.", "com.")


def _effective(value: str | None, parent_value: str | None) -> str | None:
    """Use the parent's value when the child's is empty."""
    if not value and parent_value:
        return parent_value
    return value


def analyze_pom(dependency: Dependency, descriptor: ProjectDescriptor) -> None:
    """Add evidence from a parsed POM to a dependency.

    Args:
        dependency: Dependency receiving the evidence
        descriptor: Parsed project descriptor
    """
    parent = descriptor.parent
    parent_group_id = parent.group_id if parent else None
    parent_artifact_id = parent.artifact_id if parent else None
    parent_version = parent.version if parent else None

    vendor = dependency.vendor_evidence
    product = dependency.product_evidence

    group_id = _effective(descriptor.group_id, parent_group_id)
    if group_id:
        vendor.add_evidence(POM_SOURCE, "groupid", group_id, Confidence.HIGHEST)
        product.add_evidence(POM_SOURCE, "groupid", group_id, Confidence.LOW)
        if parent_group_id and parent_group_id != group_id:
            vendor.add_evidence(POM_SOURCE, "parent-groupid", parent_group_id, Confidence.MEDIUM)
            product.add_evidence(POM_SOURCE, "parent-groupid", parent_group_id, Confidence.LOW)

    artifact_id = _effective(descriptor.artifact_id, parent_artifact_id)
    if artifact_id:
        if artifact_id.startswith(ARTIFACT_ID_PREFIXES):
            artifact_id = artifact_id[4:]
        product.add_evidence(POM_SOURCE, "artifactid", artifact_id, Confidence.HIGHEST)
        vendor.add_evidence(POM_SOURCE, "artifactid", artifact_id, Confidence.LOW)
        if parent_artifact_id and parent_artifact_id != artifact_id:
            product.add_evidence(POM_SOURCE, "parent-artifactid", parent_artifact_id, Confidence.MEDIUM)
            vendor.add_evidence(POM_SOURCE, "parent-artifactid", parent_artifact_id, Confidence.LOW)

    version = _effective(descriptor.version, parent_version)
    if version:
        dependency.version_evidence.add_evidence(POM_SOURCE, "version", version, Confidence.HIGHEST)
        if parent_version and parent_version != version:
            dependency.version_evidence.add_evidence(
                POM_SOURCE, "parent-version", parent_version, Confidence.LOW,
            )

    if descriptor.organization_name:
        vendor.add_evidence(POM_SOURCE, "organization name", descriptor.organization_name, Confidence.HIGH)

    if descriptor.name:
        product.add_evidence(POM_SOURCE, "name", descriptor.name, Confidence.HIGH)
        vendor.add_evidence(POM_SOURCE, "name", descriptor.name, Confidence.HIGH)

    if descriptor.description:
        add_description(dependency, descriptor.description, POM_SOURCE, "description")

    extract_license(descriptor, dependency)


def analyze_pom_file(dependency: Dependency, pom_file: Path) -> None:
    """Read a POM file and add its evidence to a dependency.

    Raises:
        PomParseError: If the POM cannot be read or parsed
    """
    descriptor = read_pom(pom_file)
    logger.debug(
        f"Extracting POM evidence for {dependency.display_name} "
        f"({descriptor.group_id}:{descriptor.artifact_id}:{descriptor.version})"
    )
    analyze_pom(dependency, descriptor)
