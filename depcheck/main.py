"""Command line entry point for depcheck.

Usage:
    depcheck init-db                 # Create or validate the local store
    depcheck scan lib/*.jar          # Collect identity evidence for files
    depcheck scan --json app.jar     # Same, as a JSON document
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from depcheck import __version__
from depcheck.config import Settings, get_settings
from depcheck.database import ConnectionFactory
from depcheck.exceptions import AnalysisError, StoreBootstrapError
from depcheck.services.identity import CentralAnalyzer, Dependency

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def dependency_to_dict(dependency: Dependency) -> dict:
    """Serialize a dependency and its evidence for output."""

    def _bucket(collection) -> list[dict]:
        return [
            {
                "source": e.source,
                "name": e.name,
                "value": e.value,
                "confidence": e.confidence.name,
            }
            for e in collection
        ]

    return {
        "file_name": dependency.file_name,
        "file_path": dependency.file_path,
        "sha1": dependency.sha1sum,
        "md5": dependency.md5sum,
        "description": dependency.description,
        "license": dependency.license,
        "identifiers": [
            {
                "type": i.type,
                "value": i.value,
                "url": i.url,
                "confidence": i.confidence.name,
            }
            for i in dependency.identifiers
        ],
        "evidence": {
            "vendor": _bucket(dependency.vendor_evidence),
            "product": _bucket(dependency.product_evidence),
            "version": _bucket(dependency.version_evidence),
        },
    }


def print_dependency(dependency: Dependency) -> None:
    print(f"{dependency.file_name} (sha1: {dependency.sha1sum})")
    for identifier in dependency.identifiers:
        print(f"  identifier {identifier.type}: {identifier.value} [{identifier.confidence.name}]")
    for label, collection in (
        ("vendor", dependency.vendor_evidence),
        ("product", dependency.product_evidence),
        ("version", dependency.version_evidence),
    ):
        for e in collection:
            print(f"  {label:<8} {e.source:<8} {e.name:<18} {e.value} [{e.confidence.name}]")


async def scan(files: list[Path], analyzer: CentralAnalyzer) -> list[Dependency]:
    """Run the analyzer over each file sequentially.

    Analysis errors are logged per dependency and do not stop the scan.
    """
    dependencies = []
    try:
        for path in files:
            try:
                dependency = Dependency.from_file(path)
            except OSError as e:
                logger.error(f"Unable to read {path}: {e}")
                continue
            dependencies.append(dependency)

            if not analyzer.supports(dependency):
                logger.debug(f"Skipping unsupported file {path}")
                continue
            try:
                await analyzer.analyze(dependency)
            except AnalysisError as e:
                logger.error(f"Analysis of {dependency.display_name} failed: {e}")
    finally:
        analyzer.close()
    return dependencies


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    factory = ConnectionFactory(settings)
    conn = factory.get_connection()
    conn.close()
    target, data_file = factory.get_connection_string()
    print(f"Store {factory.state.value}: {data_file or target}")
    return 0


def cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    # The store must be usable before any evidence is gathered.
    conn = ConnectionFactory(settings).get_connection()
    conn.close()

    analyzer = CentralAnalyzer(settings)
    dependencies = asyncio.run(scan(args.files, analyzer))

    if args.json:
        print(json.dumps([dependency_to_dict(d) for d in dependencies], indent=2))
    else:
        for dependency in dependencies:
            print_dependency(dependency)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depcheck",
        description="Collect identity evidence for software artifacts",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create or validate the local store")
    init_parser.set_defaults(handler=cmd_init_db)

    scan_parser = subparsers.add_parser("scan", help="Analyze artifact files")
    scan_parser.add_argument("files", nargs="+", type=Path, help="Artifact files to analyze")
    scan_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    scan_parser.set_defaults(handler=cmd_scan)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        return args.handler(args, settings)
    except StoreBootstrapError as e:
        logger.error(f"Unable to open the local store: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
