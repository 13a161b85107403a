"""
Ratings Handler - Lambda function for the ratings API.

Accepts rating submissions and puts them on the queue for the worker, serves
the current average of a place and reports the health of the pipeline's
dependencies.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict

from aws_lambda_powertools.event_handler import Response, content_types
from aws_lambda_powertools.event_handler.middlewares import NextMiddleware
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from kebabkartan.handlers.models.env_vars import get_handler_env_vars
from kebabkartan.handlers.utils.dependencies import get_rating_service
from kebabkartan.handlers.utils.errors import (
    BaseServiceError,
    QueueUnavailableError,
    ValidationError as ServiceValidationError,
    format_error_response,
    get_http_status_code,
    log_error_metrics,
)
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.handlers.utils.rest_api_resolver import HEALTH_PATH, RATINGS_PATH, app
from kebabkartan.models.input import SubmitRatingRequest
from kebabkartan.models.output import HealthCheckOutput

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    'Cache-Control': 'no-store',
}


def add_security_headers(app, next_middleware: NextMiddleware) -> Response:
    """Add security headers to all responses."""
    response = next_middleware(app)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


app.use(middlewares=[add_security_headers])


def _json_response(status_code: int, body: Dict[str, Any], headers: Dict[str, str] | None = None) -> Response:
    return Response(
        status_code=status_code,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps(body),
        headers=headers or {},
    )


@app.exception_handler(BaseServiceError)
def handle_service_error(error: BaseServiceError) -> Response:
    log_error_metrics(error)

    headers = {'Retry-After': str(error.retry_after)} if error.retry_after else None
    env = get_handler_env_vars()
    return _json_response(
        get_http_status_code(error),
        format_error_response(error, include_details=not env.is_production),
        headers,
    )


@app.exception_handler(ValidationError)
def handle_request_validation_error(error: ValidationError) -> Response:
    """Handle Pydantic validation errors raised while parsing request bodies."""
    logger.warning("Request validation failed", extra={
        "validation_errors": str(error),
        "error_count": error.error_count(),
    })

    field_errors = [
        {"field": ".".join(str(part) for part in item["loc"]), "message": item["msg"]}
        for item in error.errors()
    ]
    return handle_service_error(ServiceValidationError(
        message="Request validation failed",
        field_errors=field_errors,
    ))


def _client_ip() -> str:
    """First hop of X-Forwarded-For, else the address API Gateway saw."""
    forwarded = app.current_event.get_header_value('X-Forwarded-For')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if first_hop:
            return first_hop

    identity = app.current_event.request_context.identity
    return identity.source_ip or 'unknown'


@app.post(RATINGS_PATH)
@tracer.capture_method
def submit_rating() -> Response[str]:
    """
    Queue a rating for a place.

    Returns:
        202 with the submission receipt
    """
    try:
        body = json.loads(app.current_event.body or '{}')
    except json.JSONDecodeError:
        raise ServiceValidationError(message="Invalid JSON in request body")

    if not isinstance(body, dict):
        raise ServiceValidationError(message="Request body must be a JSON object")

    request = SubmitRatingRequest.model_validate(body)
    tracer.put_annotation("place_id", request.place_id)

    output = get_rating_service().submit_rating(request, ip=_client_ip())

    return Response(
        status_code=202,
        content_type=content_types.APPLICATION_JSON,
        body=output.model_dump_json(by_alias=True),
        headers={'Location': f'{RATINGS_PATH}/{output.place_id}'},
    )


@app.get(f'{RATINGS_PATH}/<place_id>')
@tracer.capture_method
def get_rating(place_id: str) -> Response[str]:
    """
    Current average rating of a place.

    Args:
        place_id: Place identifier
    """
    tracer.put_annotation("place_id", place_id)
    output = get_rating_service().get_rating(place_id)

    return Response(
        status_code=200,
        content_type=content_types.APPLICATION_JSON,
        body=output.model_dump_json(by_alias=True),
    )


@app.get(HEALTH_PATH)
@tracer.capture_method
def health_check() -> Response[str]:
    """Health of DynamoDB and Redis, plus the queue backlog."""
    env = get_handler_env_vars()
    service = get_rating_service()
    checks: Dict[str, Any] = {}

    checks['database'] = service.ratings_dal.health_check()

    redis_healthy = service.queue.ping()
    checks['queue'] = {'status': 'healthy' if redis_healthy else 'unhealthy'}
    if redis_healthy:
        try:
            checks['queue'].update(service.queue_status())
        except QueueUnavailableError as e:
            checks['queue'] = {'status': 'unhealthy', 'error': str(e)}

    healthy = all(check.get('status') == 'healthy' for check in checks.values())

    if healthy:
        metrics.add_metric(name="HealthCheckSuccess", unit=MetricUnit.Count, value=1)
    else:
        metrics.add_metric(name="HealthCheckFailure", unit=MetricUnit.Count, value=1)

    output = HealthCheckOutput(
        status='healthy' if healthy else 'unhealthy',
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=env.ENVIRONMENT,
        checks=checks,
    )
    return Response(
        status_code=200 if healthy else 503,
        content_type=content_types.APPLICATION_JSON,
        body=output.model_dump_json(),
    )


@tracer.capture_lambda_handler
@logger.inject_lambda_context(correlation_id_path=correlation_paths.API_GATEWAY_REST)
@metrics.log_metrics(capture_cold_start_metric=True)
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway response
    """
    tracer.put_annotation("environment", get_handler_env_vars().ENVIRONMENT)
    return app.resolve(event, context)
