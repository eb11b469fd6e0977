"""Authentication module exports"""

from .dependencies import get_current_user_id, require_admin, require_role

__all__ = ["get_current_user_id", "require_admin", "require_role"]
