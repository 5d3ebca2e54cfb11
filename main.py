"""
Policy job scheduler - standalone runner.

Runs the background scheduler without the API server:
- --run-once: run every job that is due now, then exit
- otherwise: poll until SIGINT/SIGTERM or --duration-seconds elapses
"""

import argparse
import logging
import signal
import time
from pathlib import Path
from typing import Optional

from src.engine.service import EngineService
from src.infra.logging_config import setup_logging
from src.infra.settings import get_settings


logger = logging.getLogger("hypertable_policy_jobs")

shutdown_requested = False


def signal_handler(signum, frame):
    """SIGINT / SIGTERM handler - stop after the running job completes."""
    global shutdown_requested
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping after the current job")
    shutdown_requested = True


def parse_args(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(
        description="Hypertable policy job scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run due jobs once
  python main.py --run-once

  # Poll for one hour with a 5 second interval
  python main.py --duration-seconds 3600 --poll-interval 5
        """
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="SQLite database path. Default: POLICY_DB_PATH or ./data/policy_jobs.db"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between polls when no job is due. Default: POLICY_POLL_INTERVAL or 1.0"
    )
    parser.add_argument(
        "--duration-seconds",
        type=int,
        default=None,
        help="Stop after this many seconds. Default: run until interrupted"
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        default=False,
        help="Run jobs that are due now and exit"
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    global shutdown_requested

    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    db_path = args.db_path or settings.db_path
    poll_interval = args.poll_interval or settings.poll_interval

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    service = EngineService.create(db_path=db_path, poll_interval=poll_interval)
    logger.info(f"Policy scheduler using database {db_path}")

    if args.run_once:
        stats = service.scheduler.dispatch_due()
        logger.info(f"Ran {len(stats)} due job(s)")
        return

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    start_time = time.time()
    service.start(blocking=False)
    try:
        while not shutdown_requested:
            if args.duration_seconds is not None and time.time() - start_time >= args.duration_seconds:
                logger.info("Duration reached - stopping")
                break
            time.sleep(1)
    finally:
        service.stop()
        logger.info(f"Total run time: {time.time() - start_time:.1f}s")


if __name__ == "__main__":
    main()
