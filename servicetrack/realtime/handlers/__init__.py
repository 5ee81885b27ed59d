"""
servicetrack realtime handlers
==============================

Socket.IO event handlers for the two namespaces:
  - /orders   -- order watch sessions (orderHandler)
  - /location -- provider device positioning (locationHandler)

Importing this module registers all event handlers with the shared
Socket.IO server instance.
"""

from __future__ import annotations

from . import locationHandler, orderHandler

__all__ = [
    "orderHandler",
    "locationHandler",
]
