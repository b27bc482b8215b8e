"""
Run the pipeline workers, scheduler and auto-scaler without the HTTP API.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from app.domain.pipeline import QueueName
from app.logging_utils import configure_logging
from app.runtime import PipelineRuntime
from db.session import SessionLocal

logger = logging.getLogger("run_worker")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run POI audit pipeline workers.")
    parser.add_argument(
        "--queue",
        dest="queues",
        action="append",
        choices=[queue.value for queue in QueueName],
        help="Queue to consume; repeat for several. Defaults to all queues.",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not run cron schedules and the auto-scaler in this process.",
    )
    args = parser.parse_args()

    configure_logging()
    runtime = PipelineRuntime.build(SessionLocal)
    if args.queues:
        selected = {QueueName(name) for name in args.queues}
        for queue in list(runtime.workers.workers):
            if queue not in selected:
                del runtime.workers.workers[queue]

    stop = threading.Event()

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    runtime.start(scheduler=not args.no_scheduler)
    try:
        stop.wait()
    finally:
        runtime.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
