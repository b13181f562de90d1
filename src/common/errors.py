# src/common/errors.py
"""
Dispatch error hierarchy.
Business errors are never retried; DownstreamUnavailable wraps collaborator failures.
"""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Base class for every error the dispatch core raises on purpose."""

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details


class NotFound(DispatchError):
    """Booking (or other entity) does not exist."""


class Unauthorized(DispatchError):
    """Actor may not act on this booking (not a party, or not eligible)."""


class InvalidTransition(DispatchError):
    """Requested status change is not allowed from the current status for this role."""

    def __init__(self, current: Any, requested: Any, role: Any = None) -> None:
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        role_value = getattr(role, "value", role)
        super().__init__(
            f"Cannot move booking from {current_value} to {requested_value}"
            + (f" as {role_value}" if role_value else ""),
            current=current_value,
            requested=requested_value,
            role=role_value,
        )
        self.current = current
        self.requested = requested
        self.role = role


class Conflict(DispatchError):
    """Booking already handled (lost a race or already in another status)."""


class DownstreamUnavailable(DispatchError):
    """A collaborator could not be reached after retries, or its circuit is open."""

    def __init__(self, target: str, reason: str = "") -> None:
        super().__init__(
            f"Downstream '{target}' unavailable" + (f": {reason}" if reason else ""),
            target=target,
        )
        self.target = target
        self.reason = reason
