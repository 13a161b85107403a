"""
Service wiring shared by the API handler, the worker Lambda and the worker CLI.

Clients are built on first use and cached for the lifetime of the process so
warm Lambda invocations reuse their connections.
"""

import functools

from kebabkartan.dal import BaseRatingsDal, get_ratings_dal
from kebabkartan.handlers.models.env_vars import RatingsEnvVars, get_handler_env_vars
from kebabkartan.handlers.utils.idempotency import get_idempotency_manager
from kebabkartan.logic.rating_processor import RatingProcessor
from kebabkartan.logic.rating_service import RatingService
from kebabkartan.queue.rating_queue import RatingQueue
from kebabkartan.queue.redis_client import get_redis_client
from kebabkartan.security.captcha import create_recaptcha_verifier
from kebabkartan.security.rate_limiter import RateLimitConfig, RedisRateLimiter


def build_ratings_dal(env: RatingsEnvVars) -> BaseRatingsDal:
    return get_ratings_dal(
        table_name=env.TABLE_NAME,
        user_votes_table_name=env.USER_VOTES_TABLE_NAME,
        region_name=env.AWS_REGION,
        endpoint_url=env.DYNAMODB_ENDPOINT,
    )


def build_rating_queue(env: RatingsEnvVars) -> RatingQueue:
    return RatingQueue(
        client=get_redis_client(env.REDIS_URL),
        queue_name=env.RATING_QUEUE_NAME,
        worker_id=env.WORKER_ID,
    )


def build_rating_processor(env: RatingsEnvVars, idempotent: bool = True) -> RatingProcessor:
    """
    Assemble the processor the worker runs.

    Args:
        env: Validated environment
        idempotent: Guard processing with the DynamoDB idempotency table
    """
    rate_limiter = RedisRateLimiter(
        client=get_redis_client(env.REDIS_URL),
        config=RateLimitConfig(
            requests_per_window=env.RATE_LIMIT_MAX_REQUESTS,
            window_size_seconds=env.RATE_LIMIT_WINDOW_SECONDS,
        ),
    )
    return RatingProcessor(
        captcha_verifier=create_recaptcha_verifier(env),
        rate_limiter=rate_limiter,
        ratings_dal=build_ratings_dal(env),
        max_retries=env.AGGREGATE_MAX_RETRIES,
        idempotency=get_idempotency_manager(env.IDEMPOTENCY_TABLE_NAME) if idempotent else None,
    )


@functools.lru_cache(maxsize=1)
def get_rating_service() -> RatingService:
    env = get_handler_env_vars()
    return RatingService(queue=build_rating_queue(env), ratings_dal=build_ratings_dal(env))
