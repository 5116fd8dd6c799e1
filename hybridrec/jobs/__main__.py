"""Run the scheduler as a standalone process.

Usage::

    python -m hybridrec.jobs

Only periodic model retraining runs here; the online learning timer needs
the in-process queue of the API service.
"""

import asyncio
import signal
import sys

from hybridrec.config import config
from hybridrec.jobs.scheduler import (
    get_scheduler,
    setup_all_jobs,
    shutdown_scheduler,
    start_scheduler,
)
from hybridrec.logging import get_logger, setup_logging

setup_logging(config.log_level)
logger = get_logger(__name__)


def _handle_signal(signum, frame):
    logger.info(f"Received signal {signum}, shutting down scheduler")
    shutdown_scheduler()
    sys.exit(0)


async def _run() -> None:
    from hybridrec.runtime import get_runtime, prepare_model
    from hybridrec.storage import ensure_schema

    await ensure_schema()
    prepare_model(get_runtime().model, config)

    start_scheduler()
    setup_all_jobs(include_learning=False)
    logger.info("Scheduler running standalone, press Ctrl+C to stop")

    try:
        while get_scheduler().running:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        shutdown_scheduler()


def main() -> None:
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
