# src/services/__init__.py
"""
HTTP services.

- dispatch_api: booking lifecycle endpoints and the booking-side queries
  used by driver matching
"""

__all__: list[str] = []
