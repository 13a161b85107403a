"""Command line entry point for the long-running rating worker."""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from kebabkartan.handlers.models.env_vars import get_handler_env_vars
from kebabkartan.handlers.utils.dependencies import build_rating_processor, build_rating_queue
from kebabkartan.handlers.utils.errors import BaseServiceError
from kebabkartan.handlers.utils.idempotency import get_idempotency_manager
from kebabkartan.handlers.utils.observability import logger, metrics
from kebabkartan.worker.rating_worker import RatingWorker, supervise


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kebabkartan-worker",
        description="Consume queued ratings and apply them to the place averages",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit instead of polling forever"
    )
    parser.add_argument(
        "--max-messages",
        type=int,
        default=None,
        help="With --once, stop after this many messages"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds to wait when the queue is empty (default: WORKER_POLL_INTERVAL_SECONDS)"
    )
    return parser


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Stop the worker loop gracefully on SIGINT and SIGTERM."""

    def _stop(signum, frame):
        logger.info("Shutdown signal received", extra={"signal": signal.Signals(signum).name})
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function for the rating worker."""
    args = build_parser().parse_args(argv)

    try:
        env = get_handler_env_vars()
    except ValueError as e:
        logger.error("Invalid worker configuration", extra={"error": str(e)})
        return 2

    # In-progress records left by a crashed worker expire after this budget
    get_idempotency_manager(env.IDEMPOTENCY_TABLE_NAME).register_in_progress_timeout(
        env.WORKER_IN_PROGRESS_EXPIRY_SECONDS
    )

    poll_interval = args.poll_interval if args.poll_interval is not None else env.WORKER_POLL_INTERVAL_SECONDS

    def worker_factory() -> RatingWorker:
        return RatingWorker(
            queue=build_rating_queue(env),
            processor=build_rating_processor(env),
            max_attempts=env.WORKER_MAX_ATTEMPTS,
            poll_interval=poll_interval,
            error_backoff=env.WORKER_ERROR_BACKOFF_SECONDS,
        )

    if args.once:
        try:
            worker = worker_factory()
            worker.queue.recover_in_flight()
            stats = worker.drain(max_messages=args.max_messages)
        except BaseServiceError as e:
            logger.error("Rating worker failed", extra={"error_code": e.error_code, "error": e.message})
            return 1
        finally:
            metrics.flush_metrics()
        logger.info("Rating worker finished", extra=stats.to_dict())
        return 0

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    supervise(worker_factory, stop_event, restart_delay=env.WORKER_RESTART_DELAY_SECONDS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
