"""
Business Logic for applying queued ratings.

A submission is verified again in the worker (reCAPTCHA, then the per-IP rate
limit) before the running average on the place record is updated. The update
is a compare-and-swap on the aggregate's version, so concurrent workers never
overwrite each other's votes.
"""

import random
import time
from typing import Callable, Optional

from aws_lambda_powertools.metrics import MetricUnit

from kebabkartan.dal import BaseRatingsDal
from kebabkartan.dal.dynamodb_handler import ConditionalCheckFailedError
from kebabkartan.handlers.utils.errors import (
    BaseServiceError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ResourceNotFoundError,
    create_error_context,
)
from kebabkartan.handlers.utils.idempotency import IdempotencyManager
from kebabkartan.handlers.utils.observability import logger, metrics, tracer
from kebabkartan.models.rating import (
    ProcessingOutcome,
    ProcessingResult,
    RatingSubmission,
    UserVote,
    utc_now_iso,
)
from kebabkartan.security.captcha import RecaptchaVerifier
from kebabkartan.security.rate_limiter import RateLimiter

DEFAULT_MAX_RETRIES = 5
RETRY_BASE_DELAY_SECONDS = 0.05


class PlaceNotFoundError(ResourceNotFoundError):
    """Raised when a rated place does not exist."""

    def __init__(self, place_id: str, context: Optional[ErrorContext] = None):
        super().__init__(
            resource_type="Place",
            resource_id=place_id,
            context=context,
        )


class AggregateConflictError(BaseServiceError):
    """Raised when the aggregate keeps changing under concurrent writers."""

    def __init__(self, place_id: str, attempts: int, context: Optional[ErrorContext] = None):
        super().__init__(
            message=f"Rating aggregate for place '{place_id}' changed concurrently {attempts} times",
            error_code="AGGREGATE_CONFLICT",
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.INFRASTRUCTURE,
            context=context,
            retry_after=1,
        )
        self.place_id = place_id
        self.attempts = attempts


class RatingProcessor:
    """Verifies a queued rating and folds it into the place's running average."""

    def __init__(
        self,
        captcha_verifier: RecaptchaVerifier,
        rate_limiter: RateLimiter,
        ratings_dal: BaseRatingsDal,
        max_retries: int = DEFAULT_MAX_RETRIES,
        idempotency: Optional[IdempotencyManager] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rating processor.

        Args:
            captcha_verifier: Verifies the submission's reCAPTCHA token
            rate_limiter: Per-IP limiter applied before persisting
            ratings_dal: Reads and writes the place aggregate and user votes
            max_retries: Compare-and-swap attempts before giving up
            idempotency: When given, processing runs at most once per submission id
            sleep: Backoff sleep between conflicting writes
        """
        self.captcha_verifier = captcha_verifier
        self.rate_limiter = rate_limiter
        self.ratings_dal = ratings_dal
        self.max_retries = max_retries
        self._sleep = sleep

        self._process = self._process_submission
        if idempotency is not None:
            self._process = idempotency.make_idempotent(self._process_submission, data_keyword_argument="submission")

    def process(self, submission: RatingSubmission) -> ProcessingResult:
        """
        Process one submission.

        Returns:
            What happened to the submission; rejected ratings are reported, not raised

        Raises:
            AggregateConflictError: If the compare-and-swap kept failing
            ExternalServiceError: If reCAPTCHA or DynamoDB could not be reached
        """
        return self._process(submission=submission)

    @tracer.capture_method
    def _process_submission(self, submission: RatingSubmission) -> ProcessingResult:
        context = create_error_context(
            request_id=submission.submission_id,
            operation="process_rating",
            user_id=submission.user_id,
            resource_id=submission.place_id,
        )
        logger.append_keys(submission_id=submission.submission_id, place_id=submission.place_id)

        try:
            if submission.captcha_verified:
                # reCAPTCHA tokens are single use; a requeued delivery was checked already
                logger.debug("Submission verified on an earlier delivery", extra={"attempts": submission.attempts})
                return self._apply(submission, context)

            verification = self.captcha_verifier.verify(submission.recaptcha_token, submission.ip)
            if not verification.accepted:
                return self._rejected(
                    submission,
                    ProcessingOutcome.REJECTED_CAPTCHA,
                    detail=f"reCAPTCHA rejected (score={verification.score})",
                )

            limit = self.rate_limiter.check_rate_limit(submission.ip)
            if not limit.allowed:
                logger.warning("Rate limit exceeded for IP", extra={"ip": submission.ip})
                return self._rejected(
                    submission,
                    ProcessingOutcome.RATE_LIMITED,
                    detail=f"Rate limit exceeded, retry after {limit.retry_after}s",
                )

            # Carried into the requeued message if the write below fails
            submission.captcha_verified = True
            return self._apply(submission, context)
        finally:
            logger.remove_keys(["submission_id", "place_id"])

    def _apply(self, submission: RatingSubmission, context: ErrorContext) -> ProcessingResult:
        rating = submission.rating_decimal

        for attempt in range(1, self.max_retries + 1):
            current = self.ratings_dal.get_aggregate(submission.place_id)
            if current is None:
                logger.error("Kebab place not found", extra={"place_id": submission.place_id})
                return self._rejected(submission, ProcessingOutcome.PLACE_NOT_FOUND, detail="Place does not exist")

            previous = None
            vote = None
            if submission.user_id:
                previous = self.ratings_dal.get_user_vote(submission.user_id, submission.place_id)
                now = utc_now_iso()
                vote = UserVote(
                    user_id=submission.user_id,
                    place_id=submission.place_id,
                    rating=rating,
                    created_at=previous.created_at if previous else now,
                    updated_at=now,
                )

            updated = current.with_vote(rating, previous.rating if previous else None)

            try:
                self.ratings_dal.save_aggregate(current, updated, vote=vote)
            except ConditionalCheckFailedError:
                metrics.add_metric(name="RatingAggregateConflict", unit=MetricUnit.Count, value=1)
                logger.info("Rating aggregate changed concurrently, retrying", extra={
                    "attempt": attempt,
                    "expected_version": current.version,
                })
                if attempt < self.max_retries:
                    self._sleep(RETRY_BASE_DELAY_SECONDS * attempt * (1 + random.random()))
                continue

            outcome = ProcessingOutcome.UPDATED if previous else ProcessingOutcome.APPLIED
            metrics.add_metric(name="RatingApplied", unit=MetricUnit.Count, value=1)
            logger.info("Successfully processed rating", extra={
                "outcome": outcome.value,
                "rating": float(updated.rating),
                "total_votes": updated.total_votes,
            })
            return ProcessingResult(
                submission_id=submission.submission_id,
                place_id=submission.place_id,
                outcome=outcome,
                rating=float(updated.rating),
                total_votes=updated.total_votes,
            )

        raise AggregateConflictError(submission.place_id, self.max_retries, context=context)

    def _rejected(self, submission: RatingSubmission, outcome: ProcessingOutcome, detail: str) -> ProcessingResult:
        metrics.add_metric(name="RatingRejected", unit=MetricUnit.Count, value=1)
        metrics.add_metadata(key="rejection_reason", value=outcome.value)
        logger.info("Rating dropped", extra={"outcome": outcome.value, "detail": detail})
        return ProcessingResult(
            submission_id=submission.submission_id,
            place_id=submission.place_id,
            outcome=outcome,
            detail=detail,
        )
