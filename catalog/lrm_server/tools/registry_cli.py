"""
Registry CLI tool for the LRM catalog.

This tool inspects the type registry:
- snapshot: Export the registry to JSON or YAML
- validate: Check layer chains and relationship endpoints for consistency
- ddl: Print the SQLite DDL generated from the registry

Usage:
    mp-registry snapshot > registry.lock.json
    mp-registry snapshot --format yaml -o registry.yaml
    mp-registry validate
    mp-registry ddl

Invariants:
    - Validation errors cause a non-zero exit code
    - Snapshots are deterministic (sorted keys)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import yaml

from ..schema import TypeRegistry
from ..schema.catalog import build_registry
from ..store.database import Database

logger = logging.getLogger(__name__)


class RegistryCLI:
    """CLI commands for the type registry.

    Example:
        >>> cli = RegistryCLI()
        >>> print(cli.snapshot(registry, fmt="yaml"))
    """

    def snapshot(self, registry: TypeRegistry, fmt: str = "json") -> str:
        """Export the registry.

        Args:
            registry: Frozen type registry
            fmt: "json" or "yaml"

        Returns:
            Serialized registry with version and fingerprint
        """
        output = {
            "version": Database.SCHEMA_VERSION,
            "fingerprint": registry.fingerprint or "unfrozen",
            "registry": registry.to_dict(),
        }
        if fmt == "yaml":
            return yaml.safe_dump(output, default_flow_style=False, sort_keys=True)
        return json.dumps(output, indent=2, sort_keys=True)

    def validate(self, registry: TypeRegistry) -> list[str]:
        """Validate the registry for internal consistency."""
        return registry.validate_all()

    def ddl(self, registry: TypeRegistry) -> str:
        """SQLite DDL generated from the registry."""
        return Database("catalog.db", registry).schema_sql()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the registry tool."""
    parser = argparse.ArgumentParser(prog="mp-registry", description="LRM catalog registry tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Export the registry")
    snapshot_parser.add_argument(
        "--format", choices=["json", "yaml"], default="json", help="Output format"
    )
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    # validate command
    subparsers.add_parser("validate", help="Validate the registry for consistency")

    # ddl command
    subparsers.add_parser("ddl", help="Print the generated SQLite DDL")

    args = parser.parse_args(argv)
    cli = RegistryCLI()

    if args.command == "snapshot":
        output = cli.snapshot(build_registry(), args.format)
        if args.output:
            with open(args.output, "w") as f:
                f.write(output)
            print(f"Registry exported to {args.output}", file=sys.stderr)
        else:
            print(output)
        return 0

    if args.command == "validate":
        errors = cli.validate(build_registry(freeze=False, validate=False))
        if not errors:
            print("Registry is valid")
            return 0
        print(f"Registry validation failed with {len(errors)} error(s):")
        for error in errors:
            print(f"  - {error}")
        return 1

    print(cli.ddl(build_registry()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
