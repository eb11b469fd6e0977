"""
Security utilities for authentication and authorization
Handles JWT access tokens and referral code generation
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
import secrets
import string

from .config import settings
from .exceptions import UnauthorizedException

class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        """Create JWT access token"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException()

    @staticmethod
    def get_subject(token: str) -> str:
        """
        Return the authenticated user id carried by an access token

        Raises UnauthorizedException for anything that is not a valid
        access token with a subject.
        """
        payload = SecurityUtils.decode_token(token)
        if payload.get("type") != "access":
            raise UnauthorizedException()

        subject = payload.get("sub")
        if not subject or not isinstance(subject, str):
            raise UnauthorizedException()
        return subject

    @staticmethod
    def get_subject_or_none(token: Optional[str]) -> Optional[str]:
        """Non-raising variant of get_subject"""
        if not token:
            return None
        try:
            return SecurityUtils.get_subject(token)
        except UnauthorizedException:
            return None

    @staticmethod
    def generate_referral_code(length: int = 8) -> str:
        """Generate alphanumeric referral code"""
        characters = string.ascii_uppercase + string.digits
        return ''.join(secrets.choice(characters) for _ in range(length))

def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an `Authorization: Bearer <token>` header"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
