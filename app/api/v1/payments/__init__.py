"""Payments module exports"""

from . import router, schemas, webhooks

__all__ = ["router", "schemas", "webhooks"]
