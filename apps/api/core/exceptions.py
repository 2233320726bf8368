"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Every failure carries
a machine-checkable ``error_code`` next to the human-readable ``detail``.
"""
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        detail = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="NOT_FOUND"
        )
        self.resource = resource


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class InvalidPlanError(APIException):
    """Unknown subscription plan id."""

    def __init__(self, plan_id: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid subscription plan: {plan_id}",
            error_code="INVALID_PLAN"
        )
        self.plan_id = plan_id


class InsufficientTokensError(APIException):
    """Token balance cannot cover the requested debit."""

    def __init__(self, detail: str = "Insufficient tokens. Please purchase a subscription."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INSUFFICIENT_TOKENS"
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


class AccountLockedError(APIException):
    """Too many failed login attempts."""

    def __init__(self, retry_after_seconds: int):
        minutes = max(1, retry_after_seconds // 60)
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Account temporarily locked. Try again in {minutes} minutes.",
            error_code="ACCOUNT_LOCKED",
            headers={"Retry-After": str(retry_after_seconds)}
        )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Render APIException as {"success": false, "detail", "error_code"}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "detail": exc.detail,
            "error_code": exc.error_code,
        },
        headers=exc.headers,
    )
