# src/worker/runner.py
"""
Worker process entry point.
"""

from __future__ import annotations

import asyncio
from typing import List

from src.worker.base import BaseWorker
from src.worker.dispatch import DispatchWorker
from src.infra.database import init_db, close_db
from src.infra.redis_client import init_redis, close_redis
from src.infra.event_bus import init_event_bus, close_event_bus
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


async def run_workers(init_infra: bool = True) -> None:
    """
    Starts the dispatch worker and blocks until cancelled.

    Args:
        init_infra: Connect PostgreSQL, Redis and RabbitMQ here. main.py passes
                    False when it already did.
    """
    await log_info("Starting dispatch workers...", type_msg=TypeMsg.INFO)

    if init_infra:
        await init_db()
        await init_redis()
        await init_event_bus()

    workers: List[BaseWorker] = [
        DispatchWorker(),
    ]

    try:
        for worker in workers:
            await worker.start()

        await log_info(f"{len(workers)} workers running", type_msg=TypeMsg.INFO)

        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Stop signal received", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Worker runner crashed: {e}", exc_info=True)
    finally:
        for worker in workers:
            await worker.stop()

        if init_infra:
            await close_event_bus()
            await close_redis()
            await close_db()

        await log_info("Workers stopped", type_msg=TypeMsg.INFO)


def main() -> None:
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
