"""
Worker Handler - scheduled Lambda function draining the rating queue.

EventBridge invokes this handler on a schedule. Each invocation recovers
messages a previous, timed-out invocation left in flight and then processes
the queue until it is empty, the per-invocation budget is spent, or the
remaining execution time gets short.
"""

from typing import Any, Dict

from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from kebabkartan.handlers.models.env_vars import get_handler_env_vars
from kebabkartan.handlers.utils.dependencies import build_rating_processor, build_rating_queue
from kebabkartan.handlers.utils.idempotency import get_idempotency_manager
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.worker.rating_worker import RatingWorker

# Leave room to finish the message in hand and flush metrics
MIN_REMAINING_TIME_MS = 10_000


@tracer.capture_lambda_handler
@logger.inject_lambda_context
@metrics.log_metrics(capture_cold_start_metric=True)
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Drain the rating queue.

    Args:
        event: EventBridge scheduled event
        context: Lambda context object

    Returns:
        Drain statistics
    """
    env = get_handler_env_vars()
    get_idempotency_manager(env.IDEMPOTENCY_TABLE_NAME).register_lambda_context(context)

    worker = RatingWorker(
        queue=build_rating_queue(env),
        processor=build_rating_processor(env),
        max_attempts=env.WORKER_MAX_ATTEMPTS,
    )
    worker.queue.recover_in_flight()

    stats = worker.drain(
        max_messages=env.WORKER_MAX_MESSAGES_PER_INVOCATION,
        should_continue=lambda: context.get_remaining_time_in_millis() > MIN_REMAINING_TIME_MS,
    )

    metrics.add_metric(name="WorkerMessagesProcessed", unit=MetricUnit.Count, value=stats.total)
    return stats.to_dict()
