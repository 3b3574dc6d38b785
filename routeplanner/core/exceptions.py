"""
Custom exceptions for the route planner.
Handles HTTP exceptions, validation errors, and route engine errors.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Standard error detail structure"""
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class BaseCustomException(HTTPException):
    """Base class for all custom exceptions"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        field: Optional[str] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.field = field

    def __str__(self):
        return self.detail


# =============================================================================
# HTTP EXCEPTIONS
# =============================================================================

class NotFoundError(BaseCustomException):
    """Resource not found exception"""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} with identifier '{identifier}' not found",
            error_code="RESOURCE_NOT_FOUND"
        )


class ConflictError(BaseCustomException):
    """Resource conflict exception"""

    def __init__(self, message: str, error_code: str = "RESOURCE_CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message,
            error_code=error_code
        )


class BadRequestError(BaseCustomException):
    """Bad request exception"""

    def __init__(self, message: str, field: str = None, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
            error_code=error_code,
            field=field
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(BaseCustomException):
    """Base validation error"""

    def __init__(self, message: str, field: str = None, errors: List[ErrorDetail] = None,
                 error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
            error_code=error_code,
            field=field
        )
        self.errors = errors or []


class UnknownWeekdayError(ValidationError):
    """Weekday label that does not normalize to any route day"""

    def __init__(self, value: Any):
        super().__init__(
            message=f"Unknown weekday: {value!r}",
            field="day",
            error_code="INVALID_WEEKDAY",
            errors=[
                ErrorDetail(
                    code="INVALID_WEEKDAY",
                    message="Day must be one of Lunes..Domingo (accents and case are ignored)",
                    field="day",
                    details={"provided_value": str(value)}
                )
            ]
        )


# =============================================================================
# ROUTE ENGINE ERRORS
# =============================================================================

class BackendOperationError(BaseCustomException):
    """A call to the spreadsheet-backed API failed"""

    def __init__(self, operation: str, message: str = None):
        detail = f"Backend operation '{operation}' failed"
        if message:
            detail += f": {message}"
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            error_code="EXTERNAL_SERVICE_ERROR"
        )
        self.operation = operation


class RouteNotStartedError(BadRequestError):
    """Finishing a route that was never started and has no completed visits"""

    def __init__(self, route_day: str = None):
        message = "No route has been started. Complete at least one visit first."
        if route_day:
            message = f"No route has been started for {route_day}. Complete at least one visit first."
        super().__init__(message=message, error_code="ROUTE_NOT_STARTED")


class CandidateDayRequiredError(BadRequestError):
    """Postponing a regular client without saying which day it moves to"""

    def __init__(self, occurrence_key: str):
        super().__init__(
            message=f"Postponing '{occurrence_key}' requires a candidate day",
            field="candidate_day",
            error_code="CANDIDATE_DAY_REQUIRED"
        )


class NoPendingReschedulesError(BadRequestError):
    """Committing an empty reschedule queue"""

    def __init__(self):
        super().__init__(message="There are no pending reschedules to save",
                         error_code="NO_PENDING_RESCHEDULES")


class VisitTransitionInProgressError(ConflictError):
    """A complete/skip confirmation for this occurrence is still in flight"""

    def __init__(self, occurrence_key: str):
        super().__init__(
            message=f"A visit update for '{occurrence_key}' is already in progress",
            error_code="TRANSITION_IN_PROGRESS"
        )
        self.occurrence_key = occurrence_key


class InvalidStatusTransitionError(ConflictError):
    """Invalid visit status transition"""

    def __init__(self, occurrence_key: str, current_status: str, new_status: str):
        super().__init__(
            message=f"Cannot change visit '{occurrence_key}' from {current_status} to {new_status}",
            error_code="INVALID_STATUS_TRANSITION"
        )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def format_error_response(error: BaseCustomException) -> Dict[str, Any]:
    """Format error response for consistent API responses"""
    response = {
        "error": True,
        "error_code": getattr(error, 'error_code', None) or 'UNKNOWN_ERROR',
        "message": error.detail,
        "status_code": error.status_code
    }

    if getattr(error, 'field', None):
        response["field"] = error.field

    if getattr(error, 'errors', None):
        response["errors"] = [
            {
                "code": err.code,
                "message": err.message,
                "field": err.field,
                "details": err.details
            } for err in error.errors
        ]

    return response


async def custom_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTP exceptions with the standard error body"""
    if isinstance(exc, BaseCustomException):
        body = format_error_response(exc)
    else:
        body = {
            "error": True,
            "error_code": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code
        }
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))
