"""Command line helpers for type strings and keyspace DDL."""

from __future__ import annotations

import argparse
import sys
import tomllib
from pathlib import Path

from dakota.config import load_options
from dakota.errors import DakotaError
from dakota.keyspace import Keyspace
from dakota.types import TypeRegistry


def _registry(types_file: Path | None) -> TypeRegistry:
    """Registry with the user-defined types of a TOML file (``[type_name]`` tables)."""
    if types_file is None:
        return TypeRegistry()
    with types_file.open("rb") as f:
        return TypeRegistry(tomllib.load(f))


def _canonicalize(args: argparse.Namespace) -> int:
    print(_registry(args.types).canonicalize(args.type))
    return 0


def _validator(args: argparse.Namespace) -> int:
    print(_registry(args.types).db_validator(args.type, args.keyspace))
    return 0


def _statement(args: argparse.Namespace) -> int:
    options = load_options(args.config)
    if options.keyspace is None:
        print(f"Error: {args.config} has no keyspace section", file=sys.stderr)
        return 1
    # Only builds statements, so no executor
    keyspace = Keyspace(
        None,
        options.keyspace.name,
        options.keyspace.replication,
        options.keyspace.durable_writes,
    )
    if args.action == "create":
        statement = keyspace.create_statement(if_not_exists=args.if_not_exists)
    elif args.action == "alter":
        statement = keyspace.alter_statement(keyspace.replication, keyspace.durable_writes)
    else:
        statement = keyspace.drop_statement(if_exists=True)
    print(statement.query + ";")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    arg_parser = argparse.ArgumentParser(
        prog="dakota", description="CQL type and schema helpers"
    )
    subparsers = arg_parser.add_subparsers(dest="command", required=True)

    canonicalize = subparsers.add_parser("canonicalize", help="Print the canonical form of a type")
    canonicalize.add_argument("type", help="CQL type string, e.g. 'map< text , int >'")
    canonicalize.add_argument(
        "--types", type=Path, help="TOML file declaring user-defined types"
    )
    canonicalize.set_defaults(handler=_canonicalize)

    validator = subparsers.add_parser(
        "validator", help="Print the marshal class validator of a type"
    )
    validator.add_argument("type", help="CQL type string")
    validator.add_argument("-k", "--keyspace", required=True, help="Keyspace of user-defined types")
    validator.add_argument(
        "--types", type=Path, help="TOML file declaring user-defined types"
    )
    validator.set_defaults(handler=_validator)

    statement = subparsers.add_parser(
        "statement", help="Print keyspace DDL built from a TOML config"
    )
    statement.add_argument("config", type=Path, help="TOML options file with a [keyspace] section")
    statement.add_argument(
        "action",
        nargs="?",
        choices=("create", "alter", "drop"),
        default="create",
        help="Statement to print (default: create)",
    )
    statement.add_argument(
        "--if-not-exists", action="store_true", help="Add IF NOT EXISTS to create"
    )
    statement.set_defaults(handler=_statement)

    args = arg_parser.parse_args(argv)
    try:
        return args.handler(args)
    except (DakotaError, OSError, tomllib.TOMLDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
