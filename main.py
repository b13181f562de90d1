#!/usr/bin/env python3
# main.py
"""
Entry point of the booking dispatch coordinator.
Runs the HTTP API, the dispatch worker, or both.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg
from src.infra.database import init_db, close_db
from src.infra.redis_client import init_redis, close_redis
from src.infra.event_bus import init_event_bus, close_event_bus

VALID_MODES = ("api", "worker", "all")

_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Cancels running components on SIGINT/SIGTERM."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nStop signal received (sig={sig}), shutting down...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def init_infrastructure() -> None:
    """Connects PostgreSQL, Redis and RabbitMQ."""
    await log_info("Initializing infrastructure...", type_msg=TypeMsg.INFO)

    await init_db()
    await log_info("PostgreSQL connected", type_msg=TypeMsg.DEBUG)

    await init_redis()
    await log_info("Redis connected", type_msg=TypeMsg.DEBUG)

    await init_event_bus()
    await log_info("RabbitMQ connected", type_msg=TypeMsg.DEBUG)


async def close_infrastructure() -> None:
    await close_event_bus()
    await close_redis()
    await close_db()
    await log_info("Connections closed", type_msg=TypeMsg.INFO)


async def run_api() -> None:
    """Serves the dispatch HTTP API with uvicorn."""
    import uvicorn

    await log_info(
        f"Starting dispatch API on port {settings.deployment.DISPATCH_API_PORT}...",
        type_msg=TypeMsg.INFO
    )

    config = uvicorn.Config(
        "src.services.dispatch_api.app:app",
        host=settings.deployment.DISPATCH_API_HOST,
        port=settings.deployment.DISPATCH_API_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Dispatch API: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_worker() -> None:
    """Runs the dispatch worker on the already initialized infrastructure."""
    from src.worker.runner import run_workers

    await run_workers(init_infra=False)


async def main(mode: str | None = None) -> None:
    """
    Starts the selected component.

    Args:
        mode: api, worker or all. Falls back to COMPONENT_MODE from config.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE if settings.system.COMPONENT_MODE in VALID_MODES else "all"

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}, mode '{mode}'",
        type_msg=TypeMsg.INFO
    )

    try:
        if mode == "api":
            # the API connects its own infrastructure in its lifespan
            _running_tasks = [asyncio.create_task(run_api())]
        else:
            await init_infrastructure()
            _running_tasks = [asyncio.create_task(run_worker())]
            if mode == "all":
                _running_tasks.append(asyncio.create_task(run_api()))

        await asyncio.gather(*_running_tasks, return_exceptions=True)

    except asyncio.CancelledError:
        await log_info("Cancelled, shutting down", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        for task in _running_tasks:
            if not task.done():
                task.cancel()
        if _running_tasks:
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            _running_tasks.clear()

        if mode != "api":
            try:
                await close_infrastructure()
            except Exception as e:
                await log_error(f"Failed to close connections: {e}")
        await log_info("Stopped", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    print("""
Booking dispatch coordinator

Usage:
    python main.py [mode]

Modes:
    api       HTTP API (bookings, driver availability, customer history)
    worker    Dispatch worker (driver search, broadcast, acceptance)
    all       Both in one process (default)
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        if arg not in VALID_MODES:
            print(f"Unknown mode: {arg}")
            print_usage()
            sys.exit(1)
        mode = arg

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
