"""
ExpiryGuard CLI — entry point for operator tasks.

Usage:
    expiryguard init-db                         # Create the secrets table
    expiryguard run [--date 2025-01-31]         # One reconciliation pass
    expiryguard daemon                          # Scheduler + health endpoint
    expiryguard add --owner a@b.c --name tls --expires 2025-03-01
    expiryguard list --owner a@b.c              # Active secrets, soonest first
    expiryguard delete --owner a@b.c --id 42    # Soft delete
    expiryguard status --owner a@b.c            # Urgent / expiring-soon counts
    expiryguard test-email --to a@b.c           # Check SMTP settings
    expiryguard version
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="expiryguard",
        description="ExpiryGuard — expiry notifications for secrets, certificates and licenses.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("version", help="Show version")
    subparsers.add_parser("init-db", help="Create the secrets table")
    subparsers.add_parser("daemon", help="Run the scheduler and health endpoint")

    run_parser = subparsers.add_parser("run", help="Run one reconciliation pass now")
    run_parser.add_argument(
        "--date", type=_parse_date, default=None, help="Evaluate as of this date (default: today, UTC)"
    )

    add_parser = subparsers.add_parser("add", help="Add a secret")
    add_parser.add_argument("--owner", required=True, help="Owner email")
    add_parser.add_argument("--name", required=True, help="Display name")
    add_parser.add_argument("--expires", required=True, type=_parse_date, help="YYYY-MM-DD")
    add_parser.add_argument("--notes", default=None, help="Free-text notes")

    list_parser = subparsers.add_parser("list", help="List an owner's active secrets")
    list_parser.add_argument("--owner", required=True, help="Owner email")

    delete_parser = subparsers.add_parser("delete", help="Soft-delete a secret")
    delete_parser.add_argument("--owner", required=True, help="Owner email")
    delete_parser.add_argument("--id", required=True, type=int, help="Secret ID")

    status_parser = subparsers.add_parser("status", help="Show urgent / expiring-soon counts")
    status_parser.add_argument("--owner", required=True, help="Owner email")

    test_parser = subparsers.add_parser("test-email", help="Send a test email")
    test_parser.add_argument("--to", required=True, help="Recipient address")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from expiryguard import __version__

        print(f"expiryguard {__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    import logging

    from expiryguard.daemon import configure_logging

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    handlers = {
        "init-db": _cmd_init_db,
        "run": _cmd_run,
        "daemon": _cmd_daemon,
        "add": _cmd_add,
        "list": _cmd_list,
        "delete": _cmd_delete,
        "status": _cmd_status,
        "test-email": _cmd_test_email,
    }
    return handlers[args.command](args)


def _cmd_init_db(args: argparse.Namespace) -> int:
    from expiryguard.errors import StoreError
    from expiryguard.store import PostgresSecretStore

    try:
        PostgresSecretStore().init_schema()
    except StoreError as e:
        print(f"init-db failed: {e}", file=sys.stderr)
        return 1
    print("Schema applied.")
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    import asyncio

    from expiryguard.config import get_config
    from expiryguard.daemon import build_job
    from expiryguard.models import RunStatus

    job = build_job(get_config())
    summary = asyncio.run(job.run_once(today=args.date))
    print(json.dumps(summary.to_dict(), indent=2))
    return 1 if summary.status == RunStatus.FAILED else 0


def _cmd_daemon(args: argparse.Namespace) -> int:
    import asyncio

    from expiryguard.daemon import main as daemon_main

    try:
        asyncio.run(daemon_main())
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_add(args: argparse.Namespace) -> int:
    from expiryguard.errors import StoreError
    from expiryguard.store import PostgresSecretStore

    try:
        secret = PostgresSecretStore().add_secret(args.owner, args.name, args.expires, args.notes)
    except (ValueError, StoreError) as e:
        print(f"add failed: {e}", file=sys.stderr)
        return 1
    print(f"Added secret {secret.id}: {secret.name} (expires {secret.expiry_date.isoformat()})")
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    from expiryguard.config import today
    from expiryguard.errors import StoreError
    from expiryguard.evaluator import days_remaining
    from expiryguard.store import PostgresSecretStore

    try:
        secrets = PostgresSecretStore().list_for_owner(args.owner)
    except StoreError as e:
        print(f"list failed: {e}", file=sys.stderr)
        return 1

    if not secrets:
        print("No active secrets.")
        return 0

    now = today()
    for s in secrets:
        last = s.last_notified_threshold if s.last_notified_threshold is not None else "-"
        print(
            f"{s.id:>6}  {s.expiry_date.isoformat()}  {days_remaining(now, s.expiry_date):>5}d  "
            f"notified@{last!s:<3}  {s.name}"
        )
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    from expiryguard.errors import StoreError
    from expiryguard.store import PostgresSecretStore

    store = PostgresSecretStore()
    try:
        secret = store.get_secret(args.id)
        if secret is None or secret.owner_email != args.owner:
            print(f"No secret {args.id} owned by {args.owner}", file=sys.stderr)
            return 1
        if not secret.active:
            print(f"Secret {args.id} ({secret.name}) is already deleted", file=sys.stderr)
            return 1
        deleted = store.deactivate_secret(args.id, args.owner)
    except StoreError as e:
        print(f"delete failed: {e}", file=sys.stderr)
        return 1
    if not deleted:
        print(f"Secret {args.id} could not be deleted", file=sys.stderr)
        return 1
    print(f"Secret {args.id} ({secret.name}) deleted.")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    from expiryguard.config import today
    from expiryguard.errors import StoreError
    from expiryguard.evaluator import days_remaining
    from expiryguard.store import PostgresSecretStore

    try:
        secrets = PostgresSecretStore().list_for_owner(args.owner)
    except StoreError as e:
        print(f"status failed: {e}", file=sys.stderr)
        return 1

    now = today()
    remaining = [days_remaining(now, s.expiry_date) for s in secrets]
    print(f"Active secrets: {len(secrets)}")
    print(f"Expiring soon (4-7 days): {sum(1 for d in remaining if 3 < d <= 7)}")
    print(f"Urgent (<= 3 days): {sum(1 for d in remaining if d <= 3)}")
    return 0


def _cmd_test_email(args: argparse.Namespace) -> int:
    import asyncio

    from expiryguard.config import get_config
    from expiryguard.dispatcher import Dispatcher
    from expiryguard.errors import DeliveryError

    dispatcher = Dispatcher.from_config(get_config())
    try:
        asyncio.run(dispatcher.send_test_email(args.to))
    except DeliveryError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Test email sent to {args.to}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
