# src/core/resilience/__init__.py
"""
Retry and circuit breaker policy for collaborator calls.
"""

from src.core.resilience.caller import CircuitBreaker, CircuitState, ResilientCaller, get_resilient_caller

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ResilientCaller",
    "get_resilient_caller",
]
