"""
Business Logic Layer for the ratings API.

Submissions are accepted once their shape is valid and handed to the queue;
verification and persistence happen later in the worker.
"""

from typing import Any, Dict

from aws_lambda_powertools.metrics import MetricUnit

from kebabkartan.dal import BaseRatingsDal
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.logic.rating_processor import PlaceNotFoundError
from kebabkartan.models.input import SubmitRatingRequest
from kebabkartan.models.output import RatingAggregateOutput, SubmitRatingOutput
from kebabkartan.models.rating import RatingSubmission
from kebabkartan.queue.rating_queue import RatingQueue


class RatingService:
    """Business logic service for rating submissions."""

    def __init__(self, queue: RatingQueue, ratings_dal: BaseRatingsDal):
        """
        Initialize rating service.

        Args:
            queue: Queue the worker consumes
            ratings_dal: Read access to place aggregates
        """
        self.queue = queue
        self.ratings_dal = ratings_dal

    @tracer.capture_method
    def submit_rating(self, request: SubmitRatingRequest, ip: str) -> SubmitRatingOutput:
        """
        Queue a rating for asynchronous processing.

        Args:
            request: Validated request body
            ip: Client IP address, the worker's rate limit identifier

        Returns:
            Receipt with the submission id

        Raises:
            QueueUnavailableError: If the queue cannot be reached
        """
        submission = RatingSubmission.create(
            place_id=request.place_id,
            rating=request.rating,
            recaptcha_token=request.recaptcha_token,
            ip=ip,
            user_id=request.user_id,
        )
        self.queue.enqueue(submission)

        metrics.add_metric(name="RatingSubmitted", unit=MetricUnit.Count, value=1)
        logger.info("Rating request queued", extra={
            "submission_id": submission.submission_id,
            "place_id": submission.place_id,
        })

        return SubmitRatingOutput(
            submission_id=submission.submission_id,
            place_id=submission.place_id,
            queued_at=submission.queued_at,
        )

    @tracer.capture_method
    def get_rating(self, place_id: str) -> RatingAggregateOutput:
        """
        Read the current rating of a place.

        Raises:
            PlaceNotFoundError: If the place does not exist
        """
        aggregate = self.ratings_dal.get_aggregate(place_id)
        if aggregate is None:
            raise PlaceNotFoundError(place_id)

        return RatingAggregateOutput(
            place_id=aggregate.place_id,
            rating=round(float(aggregate.rating), 2),
            total_votes=aggregate.total_votes,
            updated_at=aggregate.updated_at,
        )

    def queue_status(self) -> Dict[str, Any]:
        return {
            'queue_depth': self.queue.depth(),
            'dead_letter_depth': self.queue.dead_letter_depth(),
        }
