"""SQLAlchemy ORM models for the local vulnerability store.

The tables are created by the bundled ``depcheck/data/initialize.sql`` script
rather than ``metadata.create_all()``, so the script stays the single source
of the schema and of its version marker. These mappings describe the same
tables for querying.

Core entity relationships:
    Vulnerability --1:N--> Reference
    Vulnerability --N:M--> CpeEntry (through Software)
    Property (standalone key/value, holds the schema version)
"""

from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Property(Base):
    """Key/value store properties; ``version`` holds the schema version."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[str | None] = mapped_column(String(500))


class Vulnerability(Base):
    """A CVE entry with its CVSS v2 base metrics."""

    __tablename__ = "vulnerability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cve: Mapped[str | None] = mapped_column(String(20), unique=True)
    description: Mapped[str | None] = mapped_column(String(8000))
    cwe: Mapped[str | None] = mapped_column(String(10))
    cvss_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 1))
    cvss_access_vector: Mapped[str | None] = mapped_column(String(20))
    cvss_access_complexity: Mapped[str | None] = mapped_column(String(20))
    cvss_authentication: Mapped[str | None] = mapped_column(String(20))
    cvss_confidentiality_impact: Mapped[str | None] = mapped_column(String(20))
    cvss_integrity_impact: Mapped[str | None] = mapped_column(String(20))
    cvss_availability_impact: Mapped[str | None] = mapped_column(String(20))

    references: Mapped[list["Reference"]] = relationship(
        back_populates="vulnerability", cascade="all, delete-orphan"
    )
    software: Mapped[list["Software"]] = relationship(
        back_populates="vulnerability", cascade="all, delete-orphan"
    )


class Reference(Base):
    """An external reference (advisory, patch, report) for a vulnerability."""

    __tablename__ = "reference"

    cve_id: Mapped[int] = mapped_column(
        ForeignKey("vulnerability.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(1000), primary_key=True)
    url: Mapped[str] = mapped_column(String(1000), primary_key=True)
    source: Mapped[str | None] = mapped_column(String(255))

    vulnerability: Mapped["Vulnerability"] = relationship(back_populates="references")


class CpeEntry(Base):
    """A CPE identifier split into vendor and product."""

    __tablename__ = "cpe_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cpe: Mapped[str | None] = mapped_column(String(250))
    vendor: Mapped[str | None] = mapped_column(String(255))
    product: Mapped[str | None] = mapped_column(String(255))


class Software(Base):
    """Links a vulnerability to an affected CPE entry."""

    __tablename__ = "software"

    cve_id: Mapped[int] = mapped_column(
        ForeignKey("vulnerability.id", ondelete="CASCADE"), primary_key=True
    )
    cpe_entry_id: Mapped[int] = mapped_column(ForeignKey("cpe_entry.id"), primary_key=True)
    previous_version: Mapped[str | None] = mapped_column(String(50))

    vulnerability: Mapped["Vulnerability"] = relationship(back_populates="software")
    cpe_entry: Mapped["CpeEntry"] = relationship()
