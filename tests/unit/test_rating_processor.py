"""Unit tests for the rating processor."""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from kebabkartan.dal.dynamodb_handler import ConditionalCheckFailedError
from kebabkartan.handlers.utils.errors import ExternalServiceError
from kebabkartan.logic.rating_processor import AggregateConflictError, RatingProcessor
from kebabkartan.models.rating import ProcessingOutcome, RatingAggregate, RatingSubmission, UserVote
from kebabkartan.security.captcha import CaptchaVerification
from kebabkartan.security.rate_limiter import RateLimitResult


def make_submission(user_id=None, rating=5) -> RatingSubmission:
    return RatingSubmission.create(
        place_id="place-1",
        rating=rating,
        recaptcha_token="token",
        ip="203.0.113.10",
        user_id=user_id,
    )


@pytest.fixture
def captcha():
    verifier = Mock()
    verifier.verify.return_value = CaptchaVerification(success=True, score=0.9, accepted=True)
    return verifier


@pytest.fixture
def limiter():
    rate_limiter = Mock()
    rate_limiter.check_rate_limit.return_value = RateLimitResult(allowed=True, remaining=4, reset_time=0)
    return rate_limiter


@pytest.fixture
def dal():
    ratings_dal = Mock()
    ratings_dal.get_aggregate.return_value = RatingAggregate(
        place_id="place-1", rating=Decimal(4), total_votes=2, version=3,
    )
    ratings_dal.get_user_vote.return_value = None
    ratings_dal.save_aggregate.side_effect = lambda current, updated, vote=None: updated
    return ratings_dal


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def processor(captcha, limiter, dal, sleeps):
    return RatingProcessor(captcha, limiter, dal, max_retries=3, sleep=sleeps.append)


class TestRatingProcessor:
    def test_applies_anonymous_vote(self, processor, dal):
        submission = make_submission()

        result = processor.process(submission)

        assert result.outcome == ProcessingOutcome.APPLIED
        assert result.submission_id == submission.submission_id
        assert result.total_votes == 3
        assert result.rating == pytest.approx(13 / 3)
        current, updated = dal.save_aggregate.call_args.args
        assert current.version == 3
        assert updated.version == 4
        assert dal.save_aggregate.call_args.kwargs["vote"] is None
        dal.get_user_vote.assert_not_called()

    def test_captcha_checked_with_ip(self, processor, captcha):
        processor.process(make_submission())

        captcha.verify.assert_called_once_with("token", "203.0.113.10")

    def test_rejected_captcha_drops_rating(self, processor, captcha, limiter, dal):
        captcha.verify.return_value = CaptchaVerification(success=True, score=0.2, accepted=False)

        result = processor.process(make_submission())

        assert result.outcome == ProcessingOutcome.REJECTED_CAPTCHA
        limiter.check_rate_limit.assert_not_called()
        dal.save_aggregate.assert_not_called()

    def test_rate_limited_drops_rating(self, processor, limiter, dal):
        limiter.check_rate_limit.return_value = RateLimitResult(
            allowed=False, remaining=0, reset_time=0, retry_after=120,
        )

        result = processor.process(make_submission())

        assert result.outcome == ProcessingOutcome.RATE_LIMITED
        limiter.check_rate_limit.assert_called_once_with("203.0.113.10")
        dal.get_aggregate.assert_not_called()

    def test_missing_place(self, processor, dal):
        dal.get_aggregate.return_value = None

        result = processor.process(make_submission())

        assert result.outcome == ProcessingOutcome.PLACE_NOT_FOUND
        dal.save_aggregate.assert_not_called()

    def test_first_vote_of_signed_in_user(self, processor, dal):
        result = processor.process(make_submission(user_id="user-1", rating=2))

        assert result.outcome == ProcessingOutcome.APPLIED
        assert result.total_votes == 3
        vote = dal.save_aggregate.call_args.kwargs["vote"]
        assert vote.user_id == "user-1"
        assert vote.rating == Decimal(2)

    def test_replaces_existing_user_vote(self, processor, dal):
        dal.get_user_vote.return_value = UserVote(
            user_id="user-1", place_id="place-1", rating=Decimal(3), created_at="2024-01-01T00:00:00+00:00",
        )

        result = processor.process(make_submission(user_id="user-1", rating=5))

        assert result.outcome == ProcessingOutcome.UPDATED
        assert result.total_votes == 2
        assert result.rating == pytest.approx(5.0)
        vote = dal.save_aggregate.call_args.kwargs["vote"]
        assert vote.created_at == "2024-01-01T00:00:00+00:00"

    def test_retries_on_version_conflict(self, processor, dal, sleeps):
        fresh = RatingAggregate(place_id="place-1", rating=Decimal(5), total_votes=3, version=4)
        dal.get_aggregate.side_effect = [dal.get_aggregate.return_value, fresh]
        dal.save_aggregate.side_effect = [ConditionalCheckFailedError("test-places", "version changed"), fresh.with_vote(Decimal(5))]

        result = processor.process(make_submission())

        assert result.outcome == ProcessingOutcome.APPLIED
        assert result.total_votes == 4
        assert dal.save_aggregate.call_count == 2
        assert dal.save_aggregate.call_args.args[0].version == 4
        assert len(sleeps) == 1

    def test_gives_up_after_max_retries(self, processor, dal, sleeps):
        dal.save_aggregate.side_effect = ConditionalCheckFailedError("test-places", "version changed")

        with pytest.raises(AggregateConflictError) as exc_info:
            processor.process(make_submission())

        assert exc_info.value.retryable
        assert dal.save_aggregate.call_count == 3
        assert len(sleeps) == 2

    def test_failed_write_keeps_verification(self, processor, dal):
        dal.save_aggregate.side_effect = ConditionalCheckFailedError("test-places", "version changed")
        submission = make_submission()

        with pytest.raises(AggregateConflictError):
            processor.process(submission)

        assert submission.captcha_verified
        assert '"captchaVerified":true' in submission.to_message()

    def test_verified_submission_skips_checks(self, processor, captcha, limiter, dal):
        submission = make_submission().model_copy(update={"captcha_verified": True, "attempts": 1})

        result = processor.process(submission)

        assert result.outcome == ProcessingOutcome.APPLIED
        captcha.verify.assert_not_called()
        limiter.check_rate_limit.assert_not_called()
        dal.save_aggregate.assert_called_once()

    def test_rejected_submission_not_marked_verified(self, processor, captcha):
        captcha.verify.return_value = CaptchaVerification(success=True, score=0.1, accepted=False)
        submission = make_submission()

        processor.process(submission)

        assert not submission.captcha_verified

    def test_captcha_outage_propagates(self, processor, captcha):
        captcha.verify.side_effect = ExternalServiceError("down", service_name="reCAPTCHA")

        with pytest.raises(ExternalServiceError):
            processor.process(make_submission())

    def test_idempotency_wraps_processing(self, captcha, limiter, dal):
        idempotency = Mock()
        idempotency.make_idempotent.side_effect = lambda func, data_keyword_argument: func

        processor = RatingProcessor(captcha, limiter, dal, idempotency=idempotency)
        result = processor.process(make_submission())

        assert result.outcome == ProcessingOutcome.APPLIED
        assert idempotency.make_idempotent.call_args.kwargs["data_keyword_argument"] == "submission"
