# src/worker/__init__.py
"""
Background workers consuming booking events from RabbitMQ.
"""

from src.worker.base import BaseWorker
from src.worker.dispatch import DispatchWorker

__all__ = ["BaseWorker", "DispatchWorker"]
