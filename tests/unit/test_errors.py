"""Unit tests for the service error hierarchy."""

import pytest

from kebabkartan.dal.dynamodb_handler import ConditionalCheckFailedError
from kebabkartan.handlers.utils.errors import (
    BusinessLogicError,
    ConfigurationError,
    ExternalServiceError,
    QueueUnavailableError,
    ResourceNotFoundError,
    ValidationError,
    create_error_context,
    format_error_response,
    get_http_status_code,
)
from kebabkartan.logic.rating_processor import AggregateConflictError


@pytest.mark.parametrize("error, retryable", [
    (ExternalServiceError("down", service_name="reCAPTCHA"), True),
    (QueueUnavailableError("down"), True),
    (ConditionalCheckFailedError("test-places", "version changed"), True),
    (AggregateConflictError("place-1", attempts=5), True),
    (ValidationError("bad"), False),
    (BusinessLogicError("bad"), False),
    (ResourceNotFoundError("Place", "place-1"), False),
    (ConfigurationError("missing secret"), False),
])
def test_retryable(error, retryable):
    assert error.retryable is retryable


@pytest.mark.parametrize("error, status", [
    (ValidationError("bad"), 400),
    (ResourceNotFoundError("Place", "place-1"), 404),
    (QueueUnavailableError("down"), 503),
    (ExternalServiceError("down", service_name="reCAPTCHA"), 502),
    (ConfigurationError("missing secret"), 500),
])
def test_http_status(error, status):
    assert get_http_status_code(error) == status


def test_format_validation_error():
    error = ValidationError("bad", field_errors=[{"field": "rating", "message": "out of range"}])

    response = format_error_response(error)

    assert response["error"]["code"] == "VALIDATION_ERROR"
    assert response["error"]["field_errors"] == [{"field": "rating", "message": "out of range"}]
    assert "details" not in response["error"]


def test_format_includes_details_on_request():
    context = create_error_context(request_id="req-1", operation="get_rating", resource_id="place-1")
    error = ResourceNotFoundError("Place", "place-1", context=context)

    response = format_error_response(error, include_details=True)

    assert response["error"]["details"] == {"operation": "get_rating", "resource_id": "place-1"}
    assert response["error"]["message"] == "The requested place was not found."


def test_retry_after_rendered():
    assert format_error_response(QueueUnavailableError("down"))["retry_after"] == 30
