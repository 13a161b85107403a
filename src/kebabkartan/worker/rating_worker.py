"""
Background worker that drains the rating queue.

Each message is moved into the worker's in-flight list, processed, and then
acknowledged, requeued or dead-lettered:

- processed (any outcome, including rejections): acknowledged
- retryable failure (reCAPTCHA/DynamoDB/Redis unavailable, write conflicts): requeued
  until the delivery budget is spent, then dead-lettered
- submission still in progress in another attempt: requeued the same way
- malformed payload or any other error: dead-lettered
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.idempotency.exceptions import IdempotencyAlreadyInProgressError

from kebabkartan.handlers.utils.errors import BaseServiceError, QueueUnavailableError
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.logic.rating_processor import RatingProcessor
from kebabkartan.models.rating import ProcessingResult
from kebabkartan.queue.rating_queue import QueuedMessage, RatingQueue

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_ERROR_BACKOFF_SECONDS = 1.0
DEFAULT_RESTART_DELAY_SECONDS = 5.0

ACKED = 'acked'
REQUEUED = 'requeued'
DEAD_LETTERED = 'dead_lettered'


@dataclass
class WorkerIteration:
    """What one ``run_once`` call did with one message."""

    disposition: str
    submission_id: Optional[str] = None
    result: Optional[ProcessingResult] = None
    error: Optional[str] = None


@dataclass
class WorkerStats:
    """Counters accumulated over a drain."""

    processed: int = 0
    requeued: int = 0
    dead_lettered: int = 0
    outcomes: Counter = field(default_factory=Counter)

    def record(self, iteration: WorkerIteration) -> None:
        if iteration.disposition == ACKED:
            self.processed += 1
            if iteration.result is not None:
                self.outcomes[iteration.result.outcome.value] += 1
        elif iteration.disposition == REQUEUED:
            self.requeued += 1
        else:
            self.dead_lettered += 1

    @property
    def total(self) -> int:
        return self.processed + self.requeued + self.dead_lettered

    def to_dict(self) -> Dict[str, object]:
        return {
            'processed': self.processed,
            'requeued': self.requeued,
            'dead_lettered': self.dead_lettered,
            'total': self.total,
            'outcomes': dict(self.outcomes),
        }


class RatingWorker:
    """Consumes rating submissions from the queue and applies them."""

    def __init__(
        self,
        queue: RatingQueue,
        processor: RatingProcessor,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        error_backoff: float = DEFAULT_ERROR_BACKOFF_SECONDS,
    ):
        """
        Initialize the worker.

        Args:
            queue: Queue to consume
            processor: Applies one submission
            max_attempts: Deliveries per message before it is dead-lettered
            poll_interval: Seconds to wait when the queue is empty
            error_backoff: Seconds to wait after an unexpected error
        """
        self.queue = queue
        self.processor = processor
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff

    @tracer.capture_method
    def run_once(self) -> Optional[WorkerIteration]:
        """
        Process the next message.

        Returns:
            The iteration, or None when the queue was empty

        Raises:
            QueueUnavailableError: If Redis cannot be reached
        """
        message = self.queue.dequeue()
        if message is None:
            return None

        if message.submission is None:
            self.queue.dead_letter(message, f"malformed message: {message.error}")
            return WorkerIteration(disposition=DEAD_LETTERED, error=message.error)

        submission_id = message.submission.submission_id
        try:
            result = self.processor.process(message.submission)
        except BaseServiceError as e:
            if e.retryable:
                return self._retry(message, f"{e.error_code}: {e.message}", e.message)
            logger.error("Rating processing failed", extra={
                "submission_id": submission_id,
                "error_code": e.error_code,
                "error": e.message,
            })
            self.queue.dead_letter(message, f"{e.error_code}: {e.message}")
            return WorkerIteration(disposition=DEAD_LETTERED, submission_id=submission_id, error=e.message)
        except IdempotencyAlreadyInProgressError as e:
            logger.warning("Rating is being processed elsewhere, requeueing", extra={"submission_id": submission_id})
            return self._retry(message, f"IDEMPOTENCY_IN_PROGRESS: {e}", str(e))
        except Exception as e:
            logger.exception("Unexpected error processing rating", extra={"submission_id": submission_id})
            metrics.add_metric(name="RatingProcessingError", unit=MetricUnit.Count, value=1)
            self.queue.dead_letter(message, f"{type(e).__name__}: {e}")
            return WorkerIteration(disposition=DEAD_LETTERED, submission_id=submission_id, error=str(e))

        self.queue.ack(message)
        return WorkerIteration(disposition=ACKED, submission_id=submission_id, result=result)

    def _retry(self, message: QueuedMessage, reason: str, error: str) -> WorkerIteration:
        requeued = self.queue.retry(message, self.max_attempts, reason=reason)
        return WorkerIteration(
            disposition=REQUEUED if requeued else DEAD_LETTERED,
            submission_id=message.submission.submission_id if message.submission else None,
            error=error,
        )

    def drain(
        self,
        max_messages: Optional[int] = None,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> WorkerStats:
        """
        Process messages until the queue is empty.

        Args:
            max_messages: Stop after this many messages
            should_continue: Checked before each message, stops the drain when False

        Returns:
            Counts per disposition and outcome
        """
        stats = WorkerStats()
        while max_messages is None or stats.total < max_messages:
            if not should_continue():
                break
            iteration = self.run_once()
            if iteration is None:
                break
            stats.record(iteration)

        logger.info("Rating queue drained", extra=stats.to_dict())
        return stats

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Consume the queue until ``stop_event`` is set.

        Messages left in flight by a previous run of this worker are put back
        on the queue first.
        """
        logger.info("Starting rating worker", extra={"worker_id": self.queue.worker_id})
        self.queue.recover_in_flight()

        while not stop_event.is_set():
            try:
                iteration = self.run_once()
            except QueueUnavailableError as e:
                logger.error("Error processing rating queue", extra={"error": str(e)})
                stop_event.wait(self.error_backoff)
                continue
            except Exception:
                logger.exception("Error processing rating queue")
                stop_event.wait(self.error_backoff)
                continue

            if iteration is None:
                stop_event.wait(self.poll_interval)
                continue

            metrics.flush_metrics()
            if iteration.disposition == REQUEUED:
                stop_event.wait(self.error_backoff)

        logger.info("Rating worker stopped", extra={"worker_id": self.queue.worker_id})


def supervise(
    worker_factory: Callable[[], RatingWorker],
    stop_event: threading.Event,
    restart_delay: float = DEFAULT_RESTART_DELAY_SECONDS,
    sleep: Optional[Callable[[float], object]] = None,
) -> int:
    """
    Run a worker, restarting it after ``restart_delay`` seconds whenever it crashes.

    Returns:
        Number of restarts
    """
    wait = sleep or stop_event.wait
    restarts = 0

    while not stop_event.is_set():
        try:
            worker_factory().run_forever(stop_event)
        except Exception:
            logger.exception("Worker error, restarting", extra={"restart_delay": restart_delay})
            metrics.add_metric(name="WorkerRestart", unit=MetricUnit.Count, value=1)
            metrics.flush_metrics()
            restarts += 1
            wait(restart_delay)

    return restarts
