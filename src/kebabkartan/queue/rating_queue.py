"""
Redis list work queue for rating submissions.

Producers LPUSH onto ``ratings-queue``; consumers take from the right, so the
list is FIFO. A consumer does not pop a message outright: LMOVE atomically
parks it in the worker's in-flight list, where it stays until it is acked,
requeued or dead-lettered. Whatever a crashed worker left in flight is put
back on the queue when that worker starts again.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from aws_lambda_powertools.metrics import MetricUnit
from redis import Redis
from redis.exceptions import RedisError

from kebabkartan.handlers.utils.errors import QueueUnavailableError
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.models.rating import RatingSubmission

DEFAULT_QUEUE_NAME = 'ratings-queue'

# Pushes the replacement only if this worker still held the message in flight
MOVE_IN_FLIGHT_SCRIPT = '''
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 1 then
    redis.call('LPUSH', KEYS[2], ARGV[2])
    return 1
end
return 0
'''


@dataclass
class QueuedMessage:
    """A message taken off the queue and held in flight."""

    raw: str
    submission: Optional[RatingSubmission] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.submission is not None


class RatingQueue:
    """Reliable FIFO queue of rating submissions on a Redis list."""

    def __init__(
        self,
        client: Redis,
        queue_name: str = DEFAULT_QUEUE_NAME,
        worker_id: str = 'default',
    ) -> None:
        """
        Initialize the queue.

        Args:
            client: Redis client created with decode_responses=True
            queue_name: Name of the Redis list shared with producers
            worker_id: Names this consumer's in-flight list
        """
        self.client = client
        self.queue_name = queue_name
        self.worker_id = worker_id
        self.processing_name = f'{queue_name}:processing:{worker_id}'
        self.dead_letter_name = f'{queue_name}:dead'

    @tracer.capture_method
    def enqueue(self, submission: RatingSubmission) -> None:
        """
        Add a submission at the producer end of the queue.

        Raises:
            QueueUnavailableError: If Redis cannot be reached
        """
        try:
            self.client.lpush(self.queue_name, submission.to_message())
        except RedisError as e:
            logger.error("Failed to queue rating request", extra={
                "submission_id": submission.submission_id,
                "queue": self.queue_name,
                "error": str(e),
            })
            metrics.add_metric(name="RatingEnqueueError", unit=MetricUnit.Count, value=1)
            raise QueueUnavailableError(f"Could not enqueue rating: {e}") from e

        metrics.add_metric(name="RatingQueued", unit=MetricUnit.Count, value=1)
        logger.debug("Rating request queued", extra={
            "submission_id": submission.submission_id,
            "place_id": submission.place_id,
        })

    @tracer.capture_method
    def dequeue(self, block_timeout: float = 0) -> Optional[QueuedMessage]:
        """
        Move the oldest message into this worker's in-flight list.

        Args:
            block_timeout: Seconds to wait for a message, 0 returns immediately

        Returns:
            The message, or None when the queue is empty. Payloads that do not
            parse are returned with ``submission`` unset and ``error`` filled.
        """
        try:
            if block_timeout > 0:
                raw = self.client.blmove(self.queue_name, self.processing_name, block_timeout, 'RIGHT', 'LEFT')
            else:
                raw = self.client.lmove(self.queue_name, self.processing_name, 'RIGHT', 'LEFT')
        except RedisError as e:
            raise QueueUnavailableError(f"Could not dequeue rating: {e}") from e

        if raw is None:
            return None

        try:
            return QueuedMessage(raw=raw, submission=RatingSubmission.from_message(raw))
        except ValueError as e:
            logger.warning("Malformed rating message", extra={"error": str(e), "payload": raw[:500]})
            return QueuedMessage(raw=raw, error=str(e))

    def ack(self, message: QueuedMessage) -> None:
        """Drop a finished message from the in-flight list."""
        try:
            self.client.lrem(self.processing_name, 1, message.raw)
        except RedisError as e:
            raise QueueUnavailableError(f"Could not acknowledge rating: {e}") from e

    @tracer.capture_method
    def retry(self, message: QueuedMessage, max_attempts: int, reason: str = '') -> bool:
        """
        Put a failed message back on the queue, or dead-letter it when out of attempts.

        Args:
            message: Message currently in flight
            max_attempts: Deliveries allowed before giving up
            reason: Failure description kept with a dead-lettered message

        Returns:
            True if the message is back on the queue, False if it was dead-lettered
        """
        if message.submission is None:
            self.dead_letter(message, reason or message.error or 'malformed message')
            return False

        attempts = message.submission.attempts + 1
        if attempts >= max_attempts:
            self.dead_letter(message, reason or f'gave up after {attempts} attempts')
            return False

        requeued = message.submission.model_copy(update={'attempts': attempts}).to_message()
        try:
            moved = self._move_in_flight(message, self.queue_name, requeued)
        except RedisError as e:
            raise QueueUnavailableError(f"Could not requeue rating: {e}") from e

        if not moved:
            return True

        metrics.add_metric(name="RatingRequeued", unit=MetricUnit.Count, value=1)
        logger.warning("Rating requeued", extra={
            "submission_id": message.submission.submission_id,
            "attempts": attempts,
            "reason": reason,
        })
        return True

    @tracer.capture_method
    def dead_letter(self, message: QueuedMessage, reason: str) -> None:
        """Move a message from the in-flight list to the dead-letter list."""
        entry = json.dumps({
            'payload': message.raw,
            'reason': reason,
            'worker': self.worker_id,
            'failedAt': datetime.now(timezone.utc).isoformat(),
        })
        try:
            moved = self._move_in_flight(message, self.dead_letter_name, entry)
        except RedisError as e:
            raise QueueUnavailableError(f"Could not dead-letter rating: {e}") from e

        if not moved:
            return

        metrics.add_metric(name="RatingDeadLettered", unit=MetricUnit.Count, value=1)
        logger.error("Rating dead-lettered", extra={
            "submission_id": message.submission.submission_id if message.submission else None,
            "reason": reason,
        })

    def _move_in_flight(self, message: QueuedMessage, target: str, payload: str) -> bool:
        """Replace an in-flight message with ``payload`` on ``target`` in one atomic step."""
        moved = self.client.eval(MOVE_IN_FLIGHT_SCRIPT, 2, self.processing_name, target, message.raw, payload)
        if not moved:
            logger.warning("Rating no longer in flight, leaving it where it is", extra={
                "submission_id": message.submission.submission_id if message.submission else None,
                "target": target,
            })
        return bool(moved)

    def recover_in_flight(self) -> int:
        """
        Return messages left in this worker's in-flight list to the consumer end.

        Returns:
            Number of recovered messages
        """
        recovered = 0
        try:
            # Newest first onto the right end keeps the oldest next in line.
            while self.client.lmove(self.processing_name, self.queue_name, 'LEFT', 'RIGHT') is not None:
                recovered += 1
        except RedisError as e:
            raise QueueUnavailableError(f"Could not recover in-flight ratings: {e}") from e

        if recovered:
            metrics.add_metric(name="RatingRecovered", unit=MetricUnit.Count, value=recovered)
            logger.warning("Recovered in-flight rating messages", extra={
                "count": recovered,
                "worker_id": self.worker_id,
            })
        return recovered

    def depth(self) -> int:
        try:
            return int(self.client.llen(self.queue_name))
        except RedisError as e:
            raise QueueUnavailableError(f"Could not read queue depth: {e}") from e

    def dead_letter_depth(self) -> int:
        try:
            return int(self.client.llen(self.dead_letter_name))
        except RedisError as e:
            raise QueueUnavailableError(f"Could not read dead-letter depth: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.error("Redis ping failed", extra={"error": str(e)})
            return False
