# src/services/dispatch_api/__init__.py
"""
HTTP API of the booking dispatch coordinator.
"""

from src.services.dispatch_api.app import app

__all__ = ["app"]
