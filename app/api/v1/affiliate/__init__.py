"""Affiliate module exports"""

from . import router, schemas, services, crud

__all__ = ["router", "schemas", "services", "crud"]
