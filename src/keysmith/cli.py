"""Command-line interface for keysmith.

Usage:
    keysmith import-private-key <pem-file> <app-id> <table-name>
    keysmith get-table-name
    keysmith get-app-token <app-id> <table-name>
    keysmith get-installation-token <app-id> <installation-id> <table-name>

AWS credentials and region come from the usual boto3 sources. Settings are
read from --config (YAML), KEYSMITH_CONFIG, or KEYSMITH_* environment
variables; a .env file in the working directory is loaded first.
"""

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from keysmith.clients import Clients
from keysmith.config import KeysmithConfig, load_config
from keysmith.importer import build_stages, import_private_key
from keysmith.models import AppIdType
from keysmith.tables import list_app_tables
from keysmith.tokens import get_app_token, get_installation_access_token


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keysmith",
        description=(
            "Import GitHub App private keys into AWS KMS and issue credentials signed by them."
        ),
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--region", help="AWS region (overrides configuration)")
    sub = parser.add_subparsers(dest="command")

    imp = sub.add_parser(
        "import-private-key",
        help="Import a GitHub App private key into AWS KMS",
        epilog="Example: keysmith import-private-key private-key.pem 123456 my-app-table",
    )
    imp.add_argument("pem_file", help="Path to the private key PEM file")
    imp.add_argument("app_id", help="GitHub App ID")
    imp.add_argument("table_name", help="App table to store the App ID and key ARN")

    sub.add_parser("get-table-name", help="List app tables tagged for keysmith")

    tok = sub.add_parser("get-app-token", help="Print a KMS-signed GitHub App JWT")
    tok.add_argument("app_id", help="GitHub App ID")
    tok.add_argument("table_name", help="App table holding the App's key ARN")

    inst = sub.add_parser(
        "get-installation-token", help="Print an installation access token"
    )
    inst.add_argument("app_id", help="GitHub App ID")
    inst.add_argument("installation_id", type=int, help="GitHub App installation ID")
    inst.add_argument("table_name", help="App table holding the App's key ARN")
    inst.add_argument(
        "--repo",
        action="append",
        default=[],
        help="Repository name to scope the token to (repeatable)",
    )

    return parser


def _configure_logging() -> None:
    debug = bool(os.environ.get("KEYSMITH_DEBUG"))
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    # Only show detailed logs for our own code
    logging.getLogger("keysmith").setLevel(logging.DEBUG if debug else logging.INFO)


def _parse_app_id(raw: str, config: KeysmithConfig) -> int | str:
    if config.policy.app_id_type == AppIdType.STRING:
        return raw
    try:
        return int(raw)
    except ValueError:
        print("ERROR: GitHub AppId must be a valid number", file=sys.stderr)
        sys.exit(1)


def _print_error(exc: BaseException) -> None:
    print(f"ERROR: {exc}", file=sys.stderr)
    for note in getattr(exc, "__notes__", []):
        print(note, file=sys.stderr)


def _import_private_key(args: argparse.Namespace, config: KeysmithConfig) -> None:
    app_id = _parse_app_id(args.app_id, config)
    with Clients.create(config) as clients:
        result = import_private_key(
            args.pem_file,
            app_id,
            args.table_name,
            stages=build_stages(clients, config),
        )

    print(f"Imported private key for App ID {result.app_id}")
    print(f"  key:     {result.key_arn}")
    if result.previous_key_arn:
        print(f"  retired: {result.previous_key_arn}")
    if result.pem_deleted:
        print(f"  deleted PEM file {args.pem_file}")


def _get_table_name(args: argparse.Namespace, config: KeysmithConfig) -> None:
    with Clients.create(config) as clients:
        tables = list_app_tables(clients.tagging, config.managed_tag_key)

    if not tables:
        print(
            f"ERROR: No tables found with the {config.managed_tag_key} app table tags",
            file=sys.stderr,
        )
        sys.exit(1)

    print("\nAvailable tables:")
    for idx, name in enumerate(tables, start=1):
        print(f"{idx}. {name}")
    print(f"\nTotal tables found: {len(tables)}\n")


def _get_app_token(args: argparse.Namespace, config: KeysmithConfig) -> None:
    app_id = _parse_app_id(args.app_id, config)
    with Clients.create(config) as clients:
        token = get_app_token(clients, app_id, args.table_name, config.policy.app_id_type)
    print(token.token)
    print(f"expires: {token.expires_at.isoformat()}", file=sys.stderr)


def _get_installation_token(args: argparse.Namespace, config: KeysmithConfig) -> None:
    app_id = _parse_app_id(args.app_id, config)
    with Clients.create(config) as clients:
        token = get_installation_access_token(
            clients,
            app_id,
            args.installation_id,
            args.table_name,
            repositories=args.repo or None,
            app_id_type=config.policy.app_id_type,
        )
    print(token.token)
    if token.expires_at:
        print(f"expires: {token.expires_at.isoformat()}", file=sys.stderr)


_COMMANDS = {
    "import-private-key": _import_private_key,
    "get-table-name": _get_table_name,
    "get-app-token": _get_app_token,
    "get-installation-token": _get_installation_token,
}


def main(argv: list[str] | None = None) -> None:
    from dotenv import load_dotenv

    load_dotenv()
    _configure_logging()

    parser = _build_parser()
    args = parser.parse_args(argv)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    config = load_config(args.config)
    if args.region:
        config = config.model_copy(update={"aws_region": args.region})

    try:
        handler(args, config)
    except Exception as exc:
        _print_error(exc)
        if args.command == "import-private-key":
            print("Please fix the error and retry the import process.", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
