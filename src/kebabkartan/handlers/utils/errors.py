"""
Error handling utilities for the ratings service.

This module defines the service error hierarchy shared by the API handler and
the queue worker, together with helpers to log, classify and render errors.
The API turns errors into JSON responses; the worker uses ``retryable`` to
decide between requeueing and dead-lettering a message.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from aws_lambda_powertools.metrics import MetricUnit
from pydantic import BaseModel, Field

from kebabkartan.handlers.utils.observability import logger, metrics, tracer


class ErrorSeverity(str, Enum):
    """Error severity levels for classification."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    VALIDATION = "VALIDATION"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    CONFIGURATION = "CONFIGURATION"
    TIMEOUT = "TIMEOUT"


RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.EXTERNAL_SERVICE,
    ErrorCategory.INFRASTRUCTURE,
    ErrorCategory.TIMEOUT,
})


class ErrorContext(BaseModel):
    """Context information for errors."""

    request_id: str = Field(description="Unique request or submission identifier")
    user_id: Optional[str] = Field(default=None, description="User identifier if available")
    operation: str = Field(description="Operation being performed")
    resource_id: Optional[str] = Field(default=None, description="Resource identifier")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class BaseServiceError(Exception):
    """Base exception class for service errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.BUSINESS_LOGIC,
        context: Optional[ErrorContext] = None,
        retry_after: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.context = context
        self.retry_after = retry_after
        self.user_message = user_message or "An error occurred while processing your request."
        self.error_id = str(uuid.uuid4())

    @property
    def retryable(self) -> bool:
        """Whether a later attempt of the same operation may succeed."""
        return self.category in RETRYABLE_CATEGORIES

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and response."""
        return {
            "error_id": self.error_id,
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "retry_after": self.retry_after,
            "context": self.context.model_dump(mode="json") if self.context else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class ValidationError(BaseServiceError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, str]]] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            context=context,
            user_message="Invalid input provided. Please check your request and try again.",
        )
        self.field_errors = field_errors or []


class BusinessLogicError(BaseServiceError):
    """Raised when business logic validation fails."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_LOGIC_ERROR",
        context: Optional[ErrorContext] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.BUSINESS_LOGIC,
            context=context,
            user_message=user_message,
        )


class ExternalServiceError(BaseServiceError):
    """Raised when external service calls fail."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: str = "EXTERNAL_SERVICE_ERROR",
        retry_after: Optional[int] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXTERNAL_SERVICE,
            context=context,
            retry_after=retry_after,
            user_message="A required service is temporarily unavailable. Please try again later.",
        )
        self.service_name = service_name


class QueueUnavailableError(ExternalServiceError):
    """Raised when the rating queue cannot be reached."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message=message,
            service_name="Redis",
            error_code="QUEUE_UNAVAILABLE",
            retry_after=30,
            context=context,
        )


class ResourceNotFoundError(BaseServiceError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        context: Optional[ErrorContext] = None,
    ):
        message = f"{resource_type} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            error_code="RESOURCE_NOT_FOUND",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.BUSINESS_LOGIC,
            context=context,
            user_message=f"The requested {resource_type.lower()} was not found.",
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConfigurationError(BaseServiceError):
    """Raised when the service is missing required configuration."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
        )


def create_error_context(
    request_id: str,
    operation: str,
    user_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    **additional_data: Any,
) -> ErrorContext:
    """Create an error context for consistent error handling."""
    return ErrorContext(
        request_id=request_id,
        user_id=user_id,
        operation=operation,
        resource_id=resource_id,
        additional_data=additional_data,
    )


@tracer.capture_method
def log_error_metrics(error: BaseServiceError) -> None:
    """Log error metrics for monitoring and alerting."""
    metrics.add_metric(name="ErrorCount", unit=MetricUnit.Count, value=1)
    metrics.add_metric(name=f"Error{error.category.value}Count", unit=MetricUnit.Count, value=1)

    tracer.put_annotation("error_code", error.error_code)
    tracer.put_metadata("error_details", error.to_dict())

    logger.error(
        "Service error occurred",
        extra={
            "error_id": error.error_id,
            "error_code": error.error_code,
            "error_severity": error.severity.value,
            "error_category": error.category.value,
            "error_message": error.message,
            "context": error.context.model_dump(mode="json") if error.context else None,
        }
    )


def format_error_response(
    error: BaseServiceError,
    include_details: bool = False,
) -> Dict[str, Any]:
    """Format error for API response."""

    response: Dict[str, Any] = {
        "error": {
            "code": error.error_code,
            "message": error.user_message,
            "error_id": error.error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }

    if error.retry_after:
        response["retry_after"] = error.retry_after

    if include_details and error.context:
        response["error"]["details"] = {
            "operation": error.context.operation,
            "resource_id": error.context.resource_id,
        }

    # Add field errors for validation errors
    if isinstance(error, ValidationError) and error.field_errors:
        response["error"]["field_errors"] = error.field_errors

    return response


def get_http_status_code(error: BaseServiceError) -> int:
    """Get appropriate HTTP status code for error."""

    status_mapping = {
        "VALIDATION_ERROR": 400,
        "RESOURCE_NOT_FOUND": 404,
        "BUSINESS_LOGIC_ERROR": 422,
        "EXTERNAL_SERVICE_ERROR": 502,
        "QUEUE_UNAVAILABLE": 503,
    }

    return status_mapping.get(error.error_code, 500)
