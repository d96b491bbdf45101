#!/usr/bin/env python3
"""
Run the scheduled-transition scheduler against a database.

Loads workflow definitions and engine settings, then ticks every
``tick_interval_seconds`` until interrupted.  Each due transition runs in
its own transaction; outcomes go to the structured JSON log on stderr.

Usage:
  python3 scripts/run_scheduler.py [--config engine.yaml] [--workflows DIR_OR_FILE ...]
                                   [--ownership MODULE:FACTORY]
                                   [--db-url URL] [--create-tables] [--once]

The engine file may hold an ``engine`` section (database_url,
tick_interval_seconds, batch_size, claim_timeout_seconds, log_level), an
``access`` section with the grants used to re-validate scheduled
transitions as their owners, and an ``ownership`` section listing entity
owners.  Systems that know their owners elsewhere pass ``--ownership`` with
a zero-argument factory returning an OwnershipResolver.  The runner refuses
to start when a workflow opens edges to the entity owner and neither is
given.  WORKFLOW_DATABASE_URL overrides the configured URL.
"""

import argparse
import importlib
import signal
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Execute scheduled workflow transitions when due")
    p.add_argument("--config", default=None, help="Engine settings YAML file")
    p.add_argument(
        "--workflows",
        nargs="*",
        default=None,
        help="Workflow YAML files or directories (default: bundled workflows)",
    )
    p.add_argument(
        "--ownership",
        default=None,
        metavar="MODULE:FACTORY",
        help="Factory returning the OwnershipResolver (overrides the ownership section)",
    )
    p.add_argument("--db-url", default=None, help="Database URL (overrides config)")
    p.add_argument("--create-tables", action="store_true", help="Create tables before starting")
    p.add_argument("--once", action="store_true", help="Run a single tick and exit")
    return p.parse_args()


def _ownership_factory(spec: str):
    module_name, _, attr = spec.partition(":")
    if not attr:
        raise ValueError(f"--ownership expects MODULE:FACTORY, got {spec!r}")
    return getattr(importlib.import_module(module_name), attr)


def main() -> int:
    args = _parse_args()

    from workflow_config import (
        load_access,
        load_engine_settings,
        load_ownership,
        load_workflow_registry,
    )
    from workflow_kernel.db.engine import (
        create_tables,
        get_session,
        get_session_factory,
        init_engine_from_url,
    )
    from workflow_kernel.db.immutability import register_immutability_listeners
    from workflow_kernel.domain.access import AccessControl
    from workflow_kernel.domain.clock import SystemClock
    from workflow_kernel.exceptions import OwnershipResolverRequiredError
    from workflow_kernel.logging_config import configure_logging
    from workflow_kernel.services.notifications import LoggingNotificationSink
    from workflow_kernel.services.scheduler import TransitionScheduler, executor_factory_for
    from workflow_kernel.services.sequence_service import SequenceService

    settings = load_engine_settings(args.config)
    configure_logging(level=settings.log_level)

    registry = load_workflow_registry(args.workflows)
    access = AccessControl(load_access(args.config))
    clock = SystemClock()
    notifier = LoggingNotificationSink()

    if args.ownership:
        ownership = _ownership_factory(args.ownership)()
    else:
        ownership = load_ownership(args.config)

    try:
        executor_factory = executor_factory_for(
            registry, access, ownership=ownership, notifier=notifier, clock=clock,
        )
    except OwnershipResolverRequiredError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(args.db_url or settings.database_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    if args.create_tables:
        create_tables()
    register_immutability_listeners()

    session = get_session()
    try:
        SequenceService(session).initialize_sequences()
        session.commit()
    finally:
        session.close()

    scheduler = TransitionScheduler(
        get_session_factory(),
        executor_factory,
        clock=clock,
        tick_interval_seconds=settings.tick_interval_seconds,
        batch_size=settings.batch_size,
        claim_timeout_seconds=settings.claim_timeout_seconds,
    )

    if args.once:
        report = scheduler.tick()
        print(
            f"  executed={len(report.executed)} rejected={len(report.rejected)} "
            f"failed={len(report.failed)}"
        )
        return 0

    stopped = threading.Event()

    def _shutdown(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.start()
    print(f"  Scheduler running ({len(registry)} workflows). Ctrl-C to stop.")
    stopped.wait()
    scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
