#!/usr/bin/env python3
"""
Run the step-timeout sweeper.

Auto-approves every PENDING approval whose current step has passed its
``auto_approve_after_hours`` deadline.  Safe to run as several processes
at once; each overdue step is advanced exactly once.

Usage:
    python3 scripts/run_timeout_sweeper.py --once
    python3 scripts/run_timeout_sweeper.py --interval 30
    DATABASE_URL=postgresql://... python3 scripts/run_timeout_sweeper.py
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from workflow_batch import TimeoutScheduler  # noqa: E402
from workflow_config import load_settings  # noqa: E402
from workflow_kernel.db.engine import (  # noqa: E402
    get_session_factory,
    init_engine_from_url,
)
from workflow_kernel.logging_config import configure_logging  # noqa: E402
from workflow_services import ApprovalEngine, StaticDirectory  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Approval step timeout sweeper")
    parser.add_argument("--settings", type=Path, help="Engine settings YAML")
    parser.add_argument("--database-url", help="Overrides settings and DATABASE_URL")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument("--interval", type=float, help="Seconds between sweeps")
    parser.add_argument("--batch-size", type=int, help="Max instances per sweep")
    args = parser.parse_args()

    settings = load_settings(args.settings)
    configure_logging(level=getattr(logging, settings.log_level, logging.INFO))
    init_engine_from_url(args.database_url or settings.database_url, echo=settings.echo_sql)

    session_factory = get_session_factory()
    # Auto-advance only walks chains materialised at start; no lookups.
    engine = ApprovalEngine(session_factory, StaticDirectory())
    scheduler = TimeoutScheduler(
        engine,
        session_factory,
        tick_interval_seconds=args.interval or settings.sweep_interval_seconds,
        batch_size=args.batch_size or settings.sweep_batch_size,
    )

    if args.once:
        result = scheduler.tick()
        print(
            f"scanned={result.scanned} advanced={result.advanced} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return 1 if result.failed else 0

    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    stopped.wait()
    scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
