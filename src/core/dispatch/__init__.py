# src/core/dispatch/__init__.py
"""
Dispatch saga orchestration.
"""

from src.core.dispatch.models import DispatchSagaState
from src.core.dispatch.saga import DispatchSaga

__all__ = [
    "DispatchSagaState",
    "DispatchSaga",
]
