"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

class ExamPrepException(HTTPException):
    """Base exception class for ExamPrep application"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(ExamPrepException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class UnauthorizedException(ExamPrepException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(ExamPrepException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(ExamPrepException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(ExamPrepException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class ServiceUnavailableException(ExamPrepException):
    """503 Service Unavailable"""

    def __init__(
        self,
        detail: str = "Service temporarily unavailable",
        error_code: str = "SERVICE_UNAVAILABLE"
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code
        )

# Business logic exceptions
class InvalidReferralCodeException(BadRequestException):
    """Referral code validation failed"""

    def __init__(self, detail: str = "Invalid referral code"):
        super().__init__(
            detail=detail,
            error_code="INVALID_REFERRAL_CODE"
        )

class SelfReferralException(BadRequestException):
    """User tried to use their own referral code"""

    def __init__(self, detail: str = "Cannot use your own referral code"):
        super().__init__(
            detail=detail,
            error_code="SELF_REFERRAL"
        )

class DuplicateReferralException(ConflictException):
    """User has already been referred"""

    def __init__(self, detail: str = "User has already been referred"):
        super().__init__(
            detail=detail,
            error_code="DUPLICATE_REFERRAL"
        )

class InvalidWebhookSignatureException(UnauthorizedException):
    """Payment notification signature mismatch"""

    def __init__(self, detail: str = "Invalid webhook signature"):
        super().__init__(
            detail=detail,
            error_code="INVALID_WEBHOOK_SIGNATURE"
        )

async def examprep_exception_handler(request: Request, exc: ExamPrepException) -> JSONResponse:
    """Render application exceptions as a uniform JSON body"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "code": exc.error_code,
        },
        headers=exc.headers,
    )
