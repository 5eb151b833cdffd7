"""
Custom exceptions and error handlers for consistent error responses.

Every ledger failure carries a stable machine-readable ``error_code``, a
``kind`` from the error taxonomy and a human-readable message. Clients may
retry CONFLICT and STORAGE_FAILURE with backoff; everything else is final.
"""

import logging
from typing import Any, Dict

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

logger = logging.getLogger(__name__)


class ErrorKind:
    """Error taxonomy shared by every application exception."""
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    CONFLICT = "CONFLICT"
    STORAGE_FAILURE = "STORAGE_FAILURE"
    AUTHENTICATION = "AUTHENTICATION"


RETRYABLE_KINDS = {ErrorKind.CONFLICT, ErrorKind.STORAGE_FAILURE}


class AppException(Exception):
    """Base application exception."""

    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ResourceNotFoundError(AppException):
    """Raised when a group, expense or member is absent."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InsufficientPermissionsError(AppException):
    """Raised when the caller lacks the role or membership an operation needs."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Invalid state transitions

class InvalidStateError(AppException):
    kind = ErrorKind.INVALID_STATE

    def __init__(self, message: str, error_code: str = "ERR_STATE_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class ExpenseAlreadySettledError(InvalidStateError):
    """Raised when editing or deleting an expense that is already settled."""

    def __init__(self, expense_id: int):
        super().__init__(
            message="Cannot modify a settled expense",
            error_code="ERR_EXPENSE_SETTLED",
            details={"expense_id": expense_id}
        )


class AlreadySettledError(InvalidStateError):
    """Raised when settling (or adding a settlement to) a settled expense."""

    def __init__(self, expense_id: int):
        super().__init__(
            message="Expense is already settled",
            error_code="ERR_ALREADY_SETTLED",
            details={"expense_id": expense_id}
        )


class UnsettledExpensesExistError(InvalidStateError):
    """Raised when deleting a group that still has unsettled expenses."""

    def __init__(self, group_id: int, unsettled_count: int):
        super().__init__(
            message="Cannot delete group with unsettled expenses. Please settle all expenses first.",
            error_code="ERR_UNSETTLED_EXPENSES",
            details={"group_id": group_id, "unsettled_count": unsettled_count}
        )


class AlreadyMemberError(InvalidStateError):
    """Raised when adding a user who is already an active member."""

    def __init__(self, group_id: int, user_id: int):
        super().__init__(
            message="User is already a member of this group",
            error_code="ERR_ALREADY_MEMBER",
            details={"group_id": group_id, "user_id": user_id}
        )


# Validation failures

class ValidationFailureError(AppException):
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, message: str, error_code: str = "ERR_VALIDATION_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ShareMismatchError(ValidationFailureError):
    """Raised when supplied shares do not add up to the expected total."""

    def __init__(self, message: str, expected: Any, actual: Any):
        super().__init__(
            message=message,
            error_code="ERR_SHARE_MISMATCH",
            details={"expected": str(expected), "actual": str(actual)}
        )


class EmptyParticipantSetError(ValidationFailureError):
    def __init__(self):
        super().__init__(
            message="At least one participant is required",
            error_code="ERR_EMPTY_PARTICIPANTS"
        )


class InvalidAmountError(ValidationFailureError):
    def __init__(self, message: str = "Amount must be a non-negative number", value: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_INVALID_AMOUNT",
            details={"value": str(value)} if value is not None else None
        )


class InvalidParticipantError(ValidationFailureError):
    """Raised when a payer, participant or settlement party is not an active member."""

    def __init__(self, message: str, user_ids: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_INVALID_PARTICIPANT",
            details={"user_ids": user_ids} if user_ids is not None else None
        )


# Retryable failures

class GroupBusyError(AppException):
    """Raised when the group's exclusive section cannot be acquired in time."""

    kind = ErrorKind.CONFLICT

    def __init__(self, group_id: int, timeout: float):
        super().__init__(
            message="Group is busy with another change, please retry",
            error_code="ERR_GROUP_BUSY",
            status_code=status.HTTP_409_CONFLICT,
            details={"group_id": group_id, "timeout_seconds": timeout}
        )


class StorageFailureError(AppException):
    """Raised when the store is unreachable or a commit fails."""

    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str = "Storage operation failed", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "kind": exc.kind,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    kind_map = {
        401: ErrorKind.AUTHENTICATION,
        403: ErrorKind.FORBIDDEN,
        404: ErrorKind.NOT_FOUND,
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "kind": kind_map.get(exc.status_code),
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "kind": ErrorKind.VALIDATION_FAILURE,
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSONResponse cannot encode
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
