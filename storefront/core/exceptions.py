"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

class StorefrontException(HTTPException):
    """Base exception class for the storefront application"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class NotFoundException(StorefrontException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(StorefrontException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class ValidationException(StorefrontException):
    """422 Unprocessable Entity"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )

# Discount engine exceptions
class InvalidInstrumentConfig(ValidationException):
    """Discount instrument violates its configuration invariants"""

    def __init__(self, detail: str):
        super().__init__(
            detail=detail,
            error_code="INVALID_INSTRUMENT_CONFIG"
        )

class UsageLimitExceeded(ConflictException):
    """Redemption lost the race for the last remaining use"""

    def __init__(self, instrument_id: str, detail: Optional[str] = None):
        super().__init__(
            detail=detail or f"Discount {instrument_id} has reached its usage limit",
            error_code="USAGE_LIMIT_EXCEEDED"
        )
        self.instrument_id = instrument_id

async def storefront_exception_handler(request: Request, exc: StorefrontException) -> JSONResponse:
    """Render application exceptions with a consistent error envelope"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.error_code,
                "message": exc.detail,
            }
        },
        headers=exc.headers
    )
