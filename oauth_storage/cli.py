#!/usr/bin/env python3
"""
Administrative command line for the OAuth 2.0 storage.

    oauth-storage init                  create tables, reset the version record
    oauth-storage update                apply pending schema migrations
    oauth-storage version               print the stored schema version
    oauth-storage list-clients          print registered clients as JSON
    oauth-storage add-client ...        register a client (flags or --json FILE)
    oauth-storage delete-client ID      remove a client and all it was issued
    oauth-storage approvals OWNER       print the clients OWNER approved

Settings come from the environment (and ``.env``), see ``config.py``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError

from .config import ConfigManager
from .exceptions import OAuthStorageError
from .logging_config import configure_logging, request_context
from .models import ClientType
from .storage import OAuthStorage

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_init(storage: OAuthStorage, args: argparse.Namespace) -> int:
    storage.init_database()
    print(f"database initialized at version {storage.get_database_version()}")
    return 0


def cmd_update(storage: OAuthStorage, args: argparse.Namespace) -> int:
    before = storage.get_database_version()
    after = storage.update_database()
    if before == after:
        print(f"database is up to date at version {after}")
    else:
        print(f"database updated from version {before} to {after}")
    return 0


def cmd_version(storage: OAuthStorage, args: argparse.Namespace) -> int:
    print(storage.get_database_version())
    return 0


def cmd_list_clients(storage: OAuthStorage, args: argparse.Namespace) -> int:
    _print_json([client.to_dict() for client in storage.get_clients()])
    return 0


def cmd_add_client(storage: OAuthStorage, args: argparse.Namespace) -> int:
    if args.json:
        entries = json.loads(Path(args.json).read_text(encoding="utf-8"))
        if isinstance(entries, dict):
            entries = [entries]
    else:
        missing = [flag for flag in ("id", "name", "redirect_uri") if not getattr(args, flag)]
        if missing:
            print(f"missing required option(s): {', '.join('--' + m.replace('_', '-') for m in missing)}",
                  file=sys.stderr)
            return 2
        entries = [{
            "id": args.id,
            "name": args.name,
            "description": args.description,
            "secret": args.secret,
            "redirect_uri": args.redirect_uri,
            "type": args.type,
        }]

    failed = 0
    for entry in entries:
        outcome = storage.add_client(entry)
        if outcome:
            print(f"client {entry['id']} added")
        else:
            failed += 1
            print(f"client {entry['id']} not added ({outcome.value})", file=sys.stderr)
    return 1 if failed else 0


def cmd_delete_client(storage: OAuthStorage, args: argparse.Namespace) -> int:
    outcome = storage.delete_client(args.client_id)
    if not outcome:
        print(f"client {args.client_id} not found", file=sys.stderr)
        return 1
    print(f"client {args.client_id} deleted")
    return 0


def cmd_approvals(storage: OAuthStorage, args: argparse.Namespace) -> int:
    _print_json([entry.to_dict() for entry in storage.get_approvals(args.resource_owner_id)])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oauth-storage", description="Manage the OAuth 2.0 storage")
    parser.add_argument("--env-file", help="Read settings from this .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create tables and reset the schema version").set_defaults(func=cmd_init)
    sub.add_parser("update", help="Apply pending schema migrations").set_defaults(func=cmd_update)
    sub.add_parser("version", help="Print the schema version").set_defaults(func=cmd_version)
    sub.add_parser("list-clients", help="List registered clients").set_defaults(func=cmd_list_clients)

    add = sub.add_parser("add-client", help="Register a client")
    add.add_argument("--json", help="JSON file with one client object or a list of them")
    add.add_argument("--id")
    add.add_argument("--name")
    add.add_argument("--description", default="")
    add.add_argument("--secret")
    add.add_argument("--redirect-uri", dest="redirect_uri")
    add.add_argument("--type", default=ClientType.CONFIDENTIAL.value,
                     choices=[t.value for t in ClientType])
    add.set_defaults(func=cmd_add_client)

    delete = sub.add_parser("delete-client", help="Delete a client and everything issued to it")
    delete.add_argument("client_id")
    delete.set_defaults(func=cmd_delete_client)

    approvals = sub.add_parser("approvals", help="List the clients a resource owner approved")
    approvals.add_argument("resource_owner_id")
    approvals.set_defaults(func=cmd_approvals)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ConfigManager(env_file=args.env_file)
    except OAuthStorageError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(config.log)

    with request_context(f"cli-{uuid4().hex[:8]}"):
        try:
            with OAuthStorage(config.storage) as storage:
                return args.func(storage, args)
        except ValidationError as e:
            print(f"invalid client data: {e}", file=sys.stderr)
            return 2
        except (OSError, json.JSONDecodeError) as e:
            print(f"unable to read client file: {e}", file=sys.stderr)
            return 2
        except OAuthStorageError as e:
            logger.error(f"{args.command} failed: {e}")
            print(f"error: {e}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
