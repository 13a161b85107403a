"""
Environment variable models for type-safe configuration.

This module defines the Pydantic model for environment variables used by the
ratings API, the queue worker and the scheduled drain handler. Values are parsed
once per process by aws-lambda-env-modeler, which caches the result unless
LAMBDA_ENV_MODELER_DISABLE_CACHE is set.
"""

import socket
from typing import Annotated, Optional

from aws_lambda_env_modeler import get_environment_variables
from pydantic import BaseModel, Field, model_validator

RECAPTCHA_VERIFY_URL = 'https://www.google.com/recaptcha/api/siteverify'


class RatingsEnvVars(BaseModel):
    """Environment variables for the rating submission pipeline."""

    # DynamoDB table holding the places and their rating aggregate
    TABLE_NAME: Annotated[str, Field(
        description='DynamoDB table name for places',
        min_length=1
    )]

    USER_VOTES_TABLE_NAME: Annotated[Optional[str], Field(
        default=None,
        description='DynamoDB table for per-user votes, defaults to <TABLE_NAME>_user_votes'
    )] = None

    IDEMPOTENCY_TABLE_NAME: Annotated[str, Field(
        default='idempotency-table',
        description='DynamoDB table used by the idempotency persistence layer',
        min_length=1
    )] = 'idempotency-table'

    DYNAMODB_ENDPOINT: Annotated[Optional[str], Field(
        default=None,
        description='DynamoDB endpoint URL override (local testing)'
    )] = None

    AWS_REGION: Annotated[str, Field(
        default='eu-north-1',
        description='AWS region for service deployment'
    )] = 'eu-north-1'

    # Queue settings
    REDIS_URL: Annotated[str, Field(
        default='redis://localhost:6379',
        description='Redis/Valkey connection URL'
    )] = 'redis://localhost:6379'

    RATING_QUEUE_NAME: Annotated[str, Field(
        default='ratings-queue',
        description='Redis list used as the rating work queue',
        min_length=1
    )] = 'ratings-queue'

    # CAPTCHA settings
    RECAPTCHA_SECRET_KEY: Annotated[Optional[str], Field(
        default=None,
        description='reCAPTCHA secret key'
    )] = None

    RECAPTCHA_SECRET_NAME: Annotated[Optional[str], Field(
        default=None,
        description='Secrets Manager secret name holding the reCAPTCHA secret key'
    )] = None

    RECAPTCHA_MIN_SCORE: Annotated[float, Field(
        default=0.5,
        description='Minimum reCAPTCHA v3 score accepted',
        ge=0.0,
        le=1.0
    )] = 0.5

    RECAPTCHA_VERIFY_URL: Annotated[str, Field(
        default=RECAPTCHA_VERIFY_URL,
        description='reCAPTCHA verification endpoint'
    )] = RECAPTCHA_VERIFY_URL

    RECAPTCHA_TIMEOUT_SECONDS: Annotated[float, Field(
        default=5.0,
        description='HTTP timeout for reCAPTCHA verification',
        gt=0,
        le=30
    )] = 5.0

    # Rate limiting
    RATE_LIMIT_MAX_REQUESTS: Annotated[int, Field(
        default=5,
        description='Ratings accepted per window per client IP',
        ge=1
    )] = 5

    RATE_LIMIT_WINDOW_SECONDS: Annotated[int, Field(
        default=3600,
        description='Rate limit window length in seconds',
        ge=1
    )] = 3600

    # Worker settings
    WORKER_ID: Annotated[str, Field(
        default_factory=socket.gethostname,
        description='Identifier naming the worker in-flight list',
        min_length=1
    )]

    WORKER_POLL_INTERVAL_SECONDS: Annotated[float, Field(
        default=1.0,
        description='Sleep between polls when the queue is empty',
        gt=0
    )] = 1.0

    WORKER_ERROR_BACKOFF_SECONDS: Annotated[float, Field(
        default=1.0,
        description='Sleep after an unexpected worker error',
        ge=0
    )] = 1.0

    WORKER_RESTART_DELAY_SECONDS: Annotated[float, Field(
        default=5.0,
        description='Delay before the supervisor restarts a crashed worker',
        ge=0
    )] = 5.0

    WORKER_MAX_ATTEMPTS: Annotated[int, Field(
        default=3,
        description='Deliveries of a message before it is dead-lettered',
        ge=1,
        le=20
    )] = 3

    WORKER_MAX_MESSAGES_PER_INVOCATION: Annotated[int, Field(
        default=100,
        description='Messages drained per scheduled Lambda invocation',
        ge=1
    )] = 100

    WORKER_IN_PROGRESS_EXPIRY_SECONDS: Annotated[int, Field(
        default=60,
        description='Seconds before a rating left in progress by a crashed CLI worker may be processed again',
        ge=1
    )] = 60

    AGGREGATE_MAX_RETRIES: Annotated[int, Field(
        default=5,
        description='Compare-and-swap retries for the rating aggregate',
        ge=1,
        le=20
    )] = 5

    # Environment name (dev, test, staging, prod)
    ENVIRONMENT: Annotated[str, Field(
        default='dev',
        description='Deployment environment name',
        pattern=r'^(dev|test|staging|prod)$'
    )] = 'dev'

    POWERTOOLS_SERVICE_NAME: Annotated[str, Field(
        default='kebabkartan-ratings',
        description='Service name for AWS Powertools'
    )] = 'kebabkartan-ratings'

    LOG_LEVEL: Annotated[str, Field(
        default='INFO',
        description='Log level for application logging',
        pattern=r'^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$'
    )] = 'INFO'

    @model_validator(mode='after')
    def default_user_votes_table(self) -> 'RatingsEnvVars':
        if not self.USER_VOTES_TABLE_NAME:
            self.USER_VOTES_TABLE_NAME = f'{self.TABLE_NAME}_user_votes'
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == 'prod'


def get_handler_env_vars() -> RatingsEnvVars:
    """
    Get typed environment variables for the ratings service.

    Returns:
        Validated environment variables model instance
    """
    return get_environment_variables(model=RatingsEnvVars)
