# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Operator command line: ``pg-resilience <command>``.

Results are printed as JSON (the load test prints a text report unless
``--json`` is given). The exit status is 1 when the operation reports a
failure.
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel

from .bootstrap import ResilienceServices, resilience_services
from .core.config import Settings, get_settings
from .core.logging_utils import get_logger, level_from_name
from .schemas.load_test import QueryType
from .schemas.recovery import RestoreOptions

CLI_ACTOR = "cli"

# commands that need connection pools
POOL_COMMANDS = frozenset({"load-test", "connection-limits", "replica-health", "pool-health"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-resilience",
        description="PostgreSQL backup, recovery and pool diagnostics",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("backup", help="Create a backup now")
    commands.add_parser("list-backups", help="List backups, newest first")
    commands.add_parser("stats", help="Show backup statistics")

    restore = commands.add_parser("restore", help="Restore a backup into the database")
    restore.add_argument("path", type=Path, help="Backup artifact to restore")
    restore.add_argument("--drop-existing", action="store_true")
    restore.add_argument("--create-database", action="store_true")
    restore.add_argument(
        "--verbose", action="store_true", help="Stop on the first SQL error"
    )
    restore.add_argument("--target-database", default=None)

    recovery = commands.add_parser("test-recovery", help="Run a recovery test")
    recovery.add_argument("path", type=Path, nargs="?", default=None)
    recovery.add_argument(
        "--no-dry-run", action="store_true", help="Skip the throwaway database restore"
    )

    load = commands.add_parser("load-test", help="Load test the connection pool")
    load.add_argument("--duration", type=float, default=10.0)
    load.add_argument("--concurrency", type=int, default=10)
    load.add_argument(
        "--query-type", choices=[q.value for q in QueryType], default=QueryType.MIXED.value
    )
    load.add_argument("--no-ramp-up", action="store_true")
    load.add_argument("--json", action="store_true", help="Print JSON instead of a report")

    commands.add_parser("connection-limits", help="Probe the server connection limit")
    commands.add_parser("replica-health", help="Check read replica health")

    pool = commands.add_parser("pool-health", help="Sample pool activity")
    pool.add_argument("--duration", type=float, default=10.0)

    return parser


def _emit(payload: BaseModel | Sequence[BaseModel]) -> None:
    if isinstance(payload, BaseModel):
        print(payload.model_dump_json(indent=2))
    else:
        print(json.dumps([item.model_dump(mode="json") for item in payload], indent=2))


async def _dispatch(args: argparse.Namespace, services: ResilienceServices) -> bool:
    operations = services.operations

    if args.command == "backup":
        backup = await operations.trigger_manual_backup(actor_id=CLI_ACTOR)
        _emit(backup)
        return backup.success

    if args.command == "list-backups":
        _emit(await operations.get_backup_list(actor_id=CLI_ACTOR))
        return True

    if args.command == "stats":
        _emit(await operations.get_backup_stats(actor_id=CLI_ACTOR))
        return True

    if args.command == "restore":
        restored = await operations.restore_backup(
            RestoreOptions(
                backup_path=args.path,
                drop_existing=args.drop_existing,
                create_database=args.create_database,
                verbose=args.verbose,
                target_database=args.target_database,
            ),
            actor_id=CLI_ACTOR,
        )
        _emit(restored)
        return restored.success

    if args.command == "test-recovery":
        tested = await operations.test_disaster_recovery(
            args.path, dry_run=False if args.no_dry_run else None, actor_id=CLI_ACTOR
        )
        _emit(tested)
        return tested.success

    if args.command == "load-test":
        result = await operations.run_connection_pool_load_test(
            args.duration,
            args.concurrency,
            args.query_type,
            ramp_up=not args.no_ramp_up,
            actor_id=CLI_ACTOR,
        )
        if args.json:
            _emit(result)
        else:
            print(services.load_tester.generate_report(result))
        return result.success

    if args.command == "connection-limits":
        _emit(await operations.test_connection_limits(actor_id=CLI_ACTOR))
        return True

    if args.command == "replica-health":
        report = await operations.check_replica_health(actor_id=CLI_ACTOR)
        _emit(report)
        return report.unhealthy == 0

    if args.command == "pool-health":
        _emit(await operations.monitor_pool_health(args.duration, actor_id=CLI_ACTOR))
        return True

    raise ValueError(f"Unknown command: {args.command}")


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one parsed command and return the process exit status."""
    async with resilience_services(
        settings, connect=args.command in POOL_COMMANDS
    ) as services:
        ok = await _dispatch(args, services)
    return 0 if ok else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    get_logger(level=level_from_name(settings.log_level))

    return asyncio.run(run_command(args, settings))


if __name__ == "__main__":
    sys.exit(main())
