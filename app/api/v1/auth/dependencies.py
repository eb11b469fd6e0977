"""
Authentication dependencies

The acting user is always the subject of the verified access token. Handlers
never take a user id from the path, query or body for "my data" operations.
"""

from typing import List, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.exceptions import ForbiddenException, UnauthorizedException
from app.core.security import SecurityUtils

# auto_error=False so a missing header is a 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)

async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Get the authenticated user id (required)
    Raises 401 if there is no valid access token
    """
    if credentials is None:
        raise UnauthorizedException()
    return SecurityUtils.get_subject(credentials.credentials)

def require_role(allowed_roles: List[str]):
    """Dependency factory checking the token's role claim"""
    async def role_checker(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
    ) -> str:
        if credentials is None:
            raise UnauthorizedException()

        user_id = SecurityUtils.get_subject(credentials.credentials)
        payload = SecurityUtils.decode_token(credentials.credentials)
        if payload.get("role") not in allowed_roles:
            raise ForbiddenException("Insufficient permissions")
        return user_id
    return role_checker

require_admin = require_role(["admin"])
