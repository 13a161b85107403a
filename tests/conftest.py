"""
Pytest configuration and shared fixtures for the Kebabkartan rating pipeline.

This module provides common test fixtures and configuration used across
unit and integration tests: moto-backed DynamoDB tables, an in-memory Redis,
a stubbed reCAPTCHA endpoint and API Gateway events.
"""

import json
import os
from decimal import Decimal
from typing import Any, Dict, Optional
from unittest.mock import Mock

import boto3
import fakeredis
import httpx
import pytest
from moto import mock_aws

# Test environment configuration, set before any service module is imported
os.environ.update({
    "AWS_DEFAULT_REGION": "eu-north-1",
    "AWS_REGION": "eu-north-1",
    "AWS_ACCESS_KEY_ID": "test",
    "AWS_SECRET_ACCESS_KEY": "test",
    "TABLE_NAME": "test-places",
    "USER_VOTES_TABLE_NAME": "test-places_user_votes",
    "IDEMPOTENCY_TABLE_NAME": "test-idempotency",
    "ENVIRONMENT": "test",
    "POWERTOOLS_SERVICE_NAME": "test-kebabkartan-ratings",
    "POWERTOOLS_METRICS_NAMESPACE": "TestKebabkartan",
    "LOG_LEVEL": "DEBUG",
    "POWERTOOLS_TRACE_DISABLED": "true",  # Disable X-Ray in tests
    "POWERTOOLS_IDEMPOTENCY_DISABLED": "1",
    "RECAPTCHA_SECRET_KEY": "test-recaptcha-secret",
    "REDIS_URL": "redis://localhost:6379/15",
    "WORKER_ID": "test-worker",
    "LAMBDA_ENV_MODELER_DISABLE_CACHE": "true",  # Tests change the environment between cases
})

from kebabkartan.queue.rating_queue import RatingQueue  # noqa: E402
from kebabkartan.security.captcha import RecaptchaVerifier  # noqa: E402

PLACES_TABLE = "test-places"
USER_VOTES_TABLE = "test-places_user_votes"
PLACE_ID = "place-123"


def pytest_collection_modifyitems(config, items):
    """Mark tests by the directory they live in."""
    for item in items:
        path = str(item.path)
        if f"{os.sep}integration{os.sep}" in path:
            item.add_marker(pytest.mark.integration)
        elif f"{os.sep}unit{os.sep}" in path:
            item.add_marker(pytest.mark.unit)


# DynamoDB fixtures
@pytest.fixture
def dynamodb_tables():
    """Create mock places and user votes tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="eu-north-1")

        places = dynamodb.create_table(
            TableName=PLACES_TABLE,
            KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        user_votes = dynamodb.create_table(
            TableName=USER_VOTES_TABLE,
            KeySchema=[
                {"AttributeName": "userId", "KeyType": "HASH"},
                {"AttributeName": "placeId", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "userId", "AttributeType": "S"},
                {"AttributeName": "placeId", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        places.wait_until_exists()
        user_votes.wait_until_exists()
        yield places, user_votes


@pytest.fixture
def places_table(dynamodb_tables):
    """Places table holding one rated place."""
    places, _ = dynamodb_tables
    places.put_item(Item={
        "id": PLACE_ID,
        "name": "Kebab Palace",
        "rating": Decimal("4"),
        "totalVotes": 2,
        "updatedAt": "2024-01-01T12:00:00+00:00",
    })
    return places


@pytest.fixture
def user_votes_table(dynamodb_tables):
    _, user_votes = dynamodb_tables
    return user_votes


@pytest.fixture
def idempotency_table(dynamodb_tables):
    """Table for the Powertools idempotency persistence layer."""
    dynamodb = boto3.resource("dynamodb", region_name="eu-north-1")
    table = dynamodb.create_table(
        TableName="test-idempotency",
        KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    return table


@pytest.fixture
def ratings_dal(places_table, user_votes_table):
    from kebabkartan.dal import get_ratings_dal

    return get_ratings_dal(PLACES_TABLE, USER_VOTES_TABLE, region_name="eu-north-1")


# Redis fixtures
@pytest.fixture
def redis_client():
    """In-memory Redis speaking the real protocol semantics."""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def rating_queue(redis_client) -> RatingQueue:
    return RatingQueue(redis_client, queue_name="ratings-queue", worker_id="test-worker")


# reCAPTCHA fixtures
def recaptcha_transport(payload: Dict[str, Any], status_code: int = 200, calls: Optional[list] = None):
    """MockTransport answering every siteverify call with ``payload``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


@pytest.fixture
def recaptcha_calls() -> list:
    return []


@pytest.fixture
def accepting_verifier(recaptcha_calls) -> RecaptchaVerifier:
    transport = recaptcha_transport({"success": True, "score": 0.9}, calls=recaptcha_calls)
    return RecaptchaVerifier(secret="test-secret", client=httpx.Client(transport=transport))


@pytest.fixture
def rejecting_verifier() -> RecaptchaVerifier:
    transport = recaptcha_transport({"success": True, "score": 0.1})
    return RecaptchaVerifier(secret="test-secret", client=httpx.Client(transport=transport))


# Sample data fixtures
@pytest.fixture
def rating_body() -> Dict[str, Any]:
    """Sample rating request body as posted by the web front end."""
    return {
        "placeId": PLACE_ID,
        "rating": 5,
        "recaptchaToken": "token-abc",
    }


@pytest.fixture
def api_gateway_event():
    """Build API Gateway REST proxy events."""

    def make_event(
        method: str,
        path: str,
        body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        source_ip: str = "203.0.113.10",
    ) -> Dict[str, Any]:
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)
        return {
            "httpMethod": method,
            "path": path,
            "resource": path,
            "headers": {"Content-Type": "application/json", **(headers or {})},
            "multiValueHeaders": {},
            "body": body,
            "requestContext": {
                "requestId": "test-request-id-123",
                "accountId": "123456789012",
                "stage": "test",
                "httpMethod": method,
                "path": path,
                "resourcePath": path,
                "protocol": "HTTP/1.1",
                "requestTime": "01/Jan/2024:12:00:00 +0000",
                "requestTimeEpoch": 1704110400000,
                "identity": {
                    "sourceIp": source_ip,
                    "userAgent": "test-agent/1.0",
                },
            },
            "pathParameters": None,
            "queryStringParameters": None,
            "multiValueQueryStringParameters": None,
            "stageVariables": None,
            "isBase64Encoded": False,
        }

    return make_event


@pytest.fixture
def lambda_context():
    """Create a mock Lambda context for testing."""
    context = Mock()
    context.function_name = "test-lambda-function"
    context.function_version = "1"
    context.invoked_function_arn = "arn:aws:lambda:eu-north-1:123456789012:function:test-lambda-function"
    context.memory_limit_in_mb = 512
    context.aws_request_id = "test-request-id-123"
    context.log_group_name = "/aws/lambda/test-lambda-function"
    context.log_stream_name = "2024/01/01/[$LATEST]test123"
    context.get_remaining_time_in_millis.return_value = 30000
    return context
