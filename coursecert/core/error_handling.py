"""
Error Handling System
Standardized error taxonomy, responses, and logging for the certification API
"""
import logging
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError


class ErrorCategory(str, Enum):
    """Categories of errors for better classification"""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    BUSINESS_LOGIC = "business_logic"
    CONFLICT = "conflict"
    EXTERNAL_SERVICE = "external_service"
    STORAGE = "storage"
    DATA_INTEGRITY = "data_integrity"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorResponse(BaseModel):
    """Standardized error response model"""
    error: str = Field(..., description="Error identifier")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    request_id: str = Field(..., description="Unique request identifier")
    timestamp: str = Field(..., description="ISO timestamp of the error")
    category: ErrorCategory = Field(..., description="Error category")
    severity: ErrorSeverity = Field(..., description="Error severity")
    retryable: bool = Field(False, description="Whether the same request may be retried")

    user_message: Optional[str] = Field(None, description="User-friendly message")
    suggested_action: Optional[str] = Field(None, description="Suggested action for the user")

    stack_trace: Optional[str] = Field(None, description="Stack trace for debugging")


class ValidationErrorDetail(BaseModel):
    """Detailed validation error information"""
    field: str = Field(..., description="Field that failed validation")
    message: str = Field(..., description="Validation error message")
    code: str = Field(..., description="Validation error code")
    value: Optional[Any] = Field(None, description="Invalid value (sanitized)")


class ApplicationError(Exception):
    """Base application error with rich context"""

    def __init__(
        self,
        error_code: str,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        suggested_action: Optional[str] = None,
        retryable: bool = False,
    ):
        self.error_code = error_code
        self.message = message
        self.category = category
        self.severity = severity
        self.status_code = status_code
        self.details = details or {}
        self.user_message = user_message
        self.suggested_action = suggested_action
        self.retryable = retryable
        self.request_id = str(uuid.uuid4())
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)


class ValidationError(ApplicationError):
    """Bad input shape; surfaced to the caller and never retried"""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[ValidationErrorDetail]] = None,
        user_message: str = "Some of the submitted data is invalid.",
    ):
        self.field_errors = list(field_errors or [])
        super().__init__(
            error_code="validation_failed",
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.MEDIUM,
            status_code=422,
            details={"field_errors": [error.model_dump() for error in self.field_errors]},
            user_message=user_message,
            suggested_action="Check the submitted data and try again.",
        )


class AuthenticationError(ApplicationError):
    """Authentication-specific error"""

    def __init__(
        self,
        message: str = "Authentication failed",
        user_message: str = "You need to sign in.",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code="authentication_failed",
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.HIGH,
            status_code=401,
            details=details,
            user_message=user_message,
            suggested_action="Sign in again or refresh your token.",
        )


class AuthorizationError(ApplicationError):
    """Authorization-specific error"""

    def __init__(
        self,
        message: str = "Access denied",
        resource_type: Optional[str] = None,
        user_message: str = "You are not allowed to access this resource.",
    ):
        super().__init__(
            error_code="access_denied",
            message=message,
            category=ErrorCategory.AUTHORIZATION,
            severity=ErrorSeverity.HIGH,
            status_code=403,
            details={"resource_type": resource_type} if resource_type else None,
            user_message=user_message,
        )


class NotFoundError(ApplicationError):
    """Resource not found error"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, int]] = None,
        user_message: str = "The requested resource was not found.",
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message += f" (ID: {resource_id})"

        super().__init__(
            error_code="resource_not_found",
            message=message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
            user_message=user_message,
            suggested_action="Check the identifier and try again.",
        )


class RetakeCooldownError(ApplicationError):
    """Policy rejection of a new attempt; carries the date the caller can display"""

    def __init__(
        self,
        retake_date: Optional[datetime],
        reason: str,
        attempt_count: Optional[int] = None,
    ):
        self.retake_date = retake_date
        self.reason = reason
        super().__init__(
            error_code="RETAKE_COOLDOWN",
            message="Retake cooldown active",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            status_code=403,
            details={
                "retake_date": retake_date.isoformat() if retake_date else None,
                "reason": reason,
                "attempt_count": attempt_count,
            },
            user_message="A new interview attempt is not available yet.",
            suggested_action="Try again after the retake date.",
        )


class InterviewArchivedError(ApplicationError):
    """Transcript submitted against an archived interview"""

    def __init__(self, interview_id: str):
        super().__init__(
            error_code="interview_archived",
            message=f"Interview {interview_id} is archived",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            status_code=409,
            details={"interview_id": interview_id},
            user_message="This interview attempt is no longer active.",
            suggested_action="Start a new interview for the course.",
        )


class ConcurrencyConflictError(ApplicationError):
    """A concurrent request changed the same records first"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code="concurrency_conflict",
            message=message,
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.MEDIUM,
            status_code=409,
            details=details,
            user_message="Another request updated this interview at the same time.",
            suggested_action="Reload the interview status and try again.",
            retryable=True,
        )


class UpstreamFailureError(ApplicationError):
    """Assessment or question-generation call failed or returned malformed data"""

    def __init__(
        self,
        service: str,
        message: str,
        service_status_code: Optional[int] = None,
    ):
        super().__init__(
            error_code="upstream_failure",
            message=message,
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.HIGH,
            status_code=502,
            details={"service": service, "service_status_code": service_status_code},
            user_message="The AI service is temporarily unavailable.",
            suggested_action="Please try again in a few minutes.",
            retryable=True,
        )


class StoreTransientError(ApplicationError):
    """Document store unavailable mid-operation"""

    def __init__(self, operation: str, message: str):
        super().__init__(
            error_code="store_unavailable",
            message=message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            status_code=503,
            details={"operation": operation},
            user_message="The service is temporarily unavailable.",
            suggested_action="Please try again shortly.",
            retryable=True,
        )


class StoreConflictError(ApplicationError):
    """Uniqueness or conditional-write violation reported by the store"""

    def __init__(self, collection: str, message: str, document_id: Optional[str] = None):
        self.collection = collection
        self.document_id = document_id
        super().__init__(
            error_code="store_conflict",
            message=message,
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.MEDIUM,
            status_code=409,
            details={"collection": collection, "document_id": document_id},
            retryable=True,
        )


class DataIntegrityError(ApplicationError):
    """Stored document is malformed; non-retryable and distinct from not found"""

    def __init__(self, collection: str, document_id: Optional[str], message: str):
        super().__init__(
            error_code="data_integrity_failure",
            message=message,
            category=ErrorCategory.DATA_INTEGRITY,
            severity=ErrorSeverity.CRITICAL,
            status_code=500,
            details={"collection": collection, "document_id": document_id},
            user_message="A stored record is corrupted. Support has been notified.",
        )


class ErrorHandler:
    """Centralized error handling system"""

    def __init__(self):
        self.logger = logging.getLogger("errors")
        self.development_mode = False

    async def handle_application_error(
        self,
        request: Request,
        error: ApplicationError
    ) -> JSONResponse:
        """Handle custom application errors"""
        self._log_error(request, error)

        response = ErrorResponse(
            error=error.error_code,
            message=error.message,
            details=error.details,
            request_id=error.request_id,
            timestamp=error.timestamp.isoformat(),
            category=error.category,
            severity=error.severity,
            retryable=error.retryable,
            user_message=error.user_message,
            suggested_action=error.suggested_action,
            stack_trace=None,
        )

        if self.development_mode:
            response.stack_trace = "".join(traceback.format_exception(error))

        return JSONResponse(
            status_code=error.status_code,
            content=response.model_dump(mode="json", exclude_none=True),
        )

    async def handle_http_exception(
        self,
        request: Request,
        exc: HTTPException
    ) -> JSONResponse:
        """Handle FastAPI HTTP exceptions"""
        error = ApplicationError(
            error_code=f"http_{exc.status_code}",
            message=str(exc.detail),
            category=self._categorize_http_exception(exc.status_code),
            severity=ErrorSeverity.CRITICAL if exc.status_code >= 500 else ErrorSeverity.LOW,
            status_code=exc.status_code,
        )
        return await self.handle_application_error(request, error)

    async def handle_validation_exception(
        self,
        request: Request,
        exc: Union[PydanticValidationError, RequestValidationError, Exception]
    ) -> JSONResponse:
        """Handle request and model validation exceptions"""
        field_errors = []
        if isinstance(exc, (PydanticValidationError, RequestValidationError)):
            for error in exc.errors():
                field_errors.append(ValidationErrorDetail(
                    field='.'.join(str(loc) for loc in error['loc']),
                    message=error['msg'],
                    code=error['type'],
                    value=str(error.get('input', ''))[:100],
                ))

        validation_error = ValidationError(
            message="Validation failed",
            field_errors=field_errors
        )
        return await self.handle_application_error(request, validation_error)

    async def handle_generic_exception(
        self,
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions"""
        error = ApplicationError(
            error_code="internal_server_error",
            message="An unexpected error occurred",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            status_code=500,
            details={"exception_type": type(exc).__name__},
            user_message="An unexpected error occurred.",
        )
        error.__cause__ = exc

        self.logger.error(
            f"Unhandled exception: {exc}",
            extra={
                "request_id": error.request_id,
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=exc,
        )

        return await self.handle_application_error(request, error)

    def _log_error(self, request: Request, error: ApplicationError) -> None:
        """Log error with context"""
        log_data = {
            "request_id": error.request_id,
            "error_code": error.error_code,
            "category": error.category.value,
            "severity": error.severity.value,
            "status_code": error.status_code,
            "endpoint": request.url.path,
            "method": request.method,
        }

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(error.message, extra=log_data)
        elif error.severity == ErrorSeverity.HIGH:
            self.logger.error(error.message, extra=log_data)
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(error.message, extra=log_data)
        else:
            self.logger.info(error.message, extra=log_data)

    def _categorize_http_exception(self, status_code: int) -> ErrorCategory:
        """Categorize HTTP status codes"""
        if status_code == 401:
            return ErrorCategory.AUTHENTICATION
        elif status_code == 403:
            return ErrorCategory.AUTHORIZATION
        elif status_code == 404:
            return ErrorCategory.NOT_FOUND
        elif 400 <= status_code < 500:
            return ErrorCategory.VALIDATION
        return ErrorCategory.SYSTEM


# Global error handler
error_handler = ErrorHandler()


# FastAPI exception handlers
async def application_error_handler(request: Request, exc: ApplicationError):
    return await error_handler.handle_application_error(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException):
    return await error_handler.handle_http_exception(request, exc)


async def validation_exception_handler(request: Request, exc: Exception):
    return await error_handler.handle_validation_exception(request, exc)


async def generic_exception_handler(request: Request, exc: Exception):
    return await error_handler.handle_generic_exception(request, exc)
