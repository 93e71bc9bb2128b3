"""
kumo.cli — Command-line interface.

Usage:
    kumo deploy [--config CONFIG] --catalog CATALOG
    kumo validate [--config CONFIG] --catalog CATALOG
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml

from kumo.bulk import BulkOrchestrator
from kumo.config import KumoConfig
from kumo.errors import BatchError, KumoError
from kumo.logger import configure_logger, get_logger
from kumo.models import EntityInput
from kumo.saleor import GraphQLClient, SaleorRepository


def load_catalog(catalog_path: str) -> list[EntityInput]:
    """
    Load and parse a catalog file.

    Raises:
        ValidationError: If an entry is malformed.
    """
    path = Path(catalog_path)
    if not path.exists():
        print(f"Catalog file not found: {path}", file=sys.stderr)
        sys.exit(1)

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return [EntityInput.from_dict(item) for item in data.get("products") or []]


def cmd_deploy(args: argparse.Namespace) -> int:
    """Reconcile the remote catalog with the catalog file."""
    config = load_config(args.config)
    configure_logger(config.logging.level)
    logger = get_logger()

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error, stage="config_validation")
        return 1

    try:
        inputs = load_catalog(args.catalog)
    except KumoError as e:
        logger.error(str(e), stage="parse", error=e.to_dict())
        return 1

    logger.info(
        "Starting deployment",
        stage="startup",
        entities=len(inputs),
        concurrency=config.execution.concurrency,
    )

    repository = SaleorRepository(GraphQLClient(config))
    orchestrator = BulkOrchestrator(repository, config)

    try:
        summary = asyncio.run(orchestrator.bootstrap_many(inputs))
    except BatchError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False, default=str))
        return 1
    except KumoError as e:
        logger.error(str(e), stage="deploy", error=e.to_dict())
        return 1
    finally:
        repository.close()

    print(json.dumps(summary.to_dict(), ensure_ascii=False))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate configuration and catalog without contacting the API."""
    config = load_config(args.config)
    configure_logger(config.logging.level)

    errors = config.validate()

    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("Configuration is valid")

    try:
        inputs = load_catalog(args.catalog)
    except KumoError as e:
        print(f"Catalog error: {e}")
        return 1

    slugs: dict[str, int] = {}
    for entity_input in inputs:
        slugs[entity_input.slug] = slugs.get(entity_input.slug, 0) + 1
    duplicates = sorted(slug for slug, count in slugs.items() if count > 1)

    for slug in duplicates:
        print(f"  - duplicate slug: {slug}")

    print(f"\nValidated {len(inputs)} entities, {len(duplicates)} duplicate slugs")

    return 1 if duplicates else 0


def load_config(config_path: str | None) -> KumoConfig:
    """Load configuration from file."""
    if config_path:
        path = Path(config_path)
    else:
        for candidate in ["kumo.yaml", "kumo.yml", ".kumo.yaml", ".kumo.yml"]:
            path = Path(candidate)
            if path.exists():
                break
        else:
            print("No configuration file found", file=sys.stderr)
            sys.exit(1)

    if not path.exists():
        print(f"Configuration file not found: {path}", file=sys.stderr)
        sys.exit(1)

    return KumoConfig.from_yaml(path)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="kumo",
        description="Declarative catalog reconciliation for commerce APIs",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in [
        ("deploy", "Reconcile the remote catalog"),
        ("validate", "Validate configuration and catalog"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", help="Path to configuration file")
        sub.add_argument("--catalog", required=True, help="Path to catalog YAML file")

    args = parser.parse_args()

    if args.command == "deploy":
        return cmd_deploy(args)
    elif args.command == "validate":
        return cmd_validate(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
