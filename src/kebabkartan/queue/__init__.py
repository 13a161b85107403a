"""Rating submission queue on Redis."""

from kebabkartan.queue.rating_queue import DEFAULT_QUEUE_NAME, QueuedMessage, RatingQueue
from kebabkartan.queue.redis_client import create_redis_client, get_redis_client

__all__ = [
    "DEFAULT_QUEUE_NAME",
    "QueuedMessage",
    "RatingQueue",
    "create_redis_client",
    "get_redis_client",
]
