"""
Scheduled maintenance, meant to be run from cron / a platform scheduler:

    python -m cadence.jobs sweep            # reactivation sweep, every user
    python -m cadence.jobs prune [--days N] # drop old completion logs

Both commands cover dailies and habits. Exit code is 0 on success and 1 when
any kind failed (the other kind is still processed).
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Optional

from sqlalchemy.orm import Session

from cadence.core.errors import CadenceException
from cadence.core.logging import configure_logging
from cadence.db.base import SessionLocal
from cadence.models.enums import EntityKind
from cadence.services.lifecycle import LifecycleService
from cadence.services.reactivation import ReactivationService
from cadence.services.sql_stores import build_stores

logger = logging.getLogger("cadence.jobs")


def run_sweep(db: Session, kind: EntityKind) -> int:
    results = ReactivationService(build_stores(db, kind)).reactivate_all()
    reactivated = sum(r.reactivated_count for r in results)
    failed = sum(r.failed_periods for r in results)
    logger.info("%s sweep: users=%d reactivated=%d failed=%d",
                kind.value, len(results), reactivated, failed)
    return reactivated


def run_prune(db: Session, kind: EntityKind, days: Optional[int] = None) -> int:
    return LifecycleService(build_stores(db, kind)).prune_logs(days)


def _for_each_kind(job: Callable[[Session, EntityKind], int]) -> int:
    exit_code = 0
    for kind in EntityKind:
        db = SessionLocal()
        try:
            job(db, kind)
        except CadenceException as exc:
            logger.error("%s job failed: %s %s", kind.value, exc.code, exc.message)
            exit_code = 1
        finally:
            db.close()
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadence.jobs", description="Cadence maintenance jobs.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("sweep", help="Run the reactivation sweep for every user.")

    prune = sub.add_parser("prune", help="Delete completion logs past the retention window.")
    prune.add_argument("--days", type=int, default=None,
                       help="Retention in days (default: LOG_RETENTION_DAYS; 0 keeps all)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    if args.cmd == "sweep":
        return _for_each_kind(run_sweep)
    return _for_each_kind(lambda db, kind: run_prune(db, kind, args.days))


if __name__ == "__main__":
    sys.exit(main())
