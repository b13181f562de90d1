# src/core/eligibility/__init__.py
"""
Time-boxed driver sets per booking.
"""

from src.core.eligibility.store import EligibilityStore, RejectionStore

__all__ = [
    "EligibilityStore",
    "RejectionStore",
]
