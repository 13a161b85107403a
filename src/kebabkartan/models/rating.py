"""
Rating domain models for the submission pipeline.

This module defines the queue message carried between the API and the worker,
the rating aggregate stored on each place record, per-user votes and the
outcome of processing one submission.
"""

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kebabkartan.logic.running_average import add_vote, replace_vote

# Namespace for ids derived from messages queued without a submission id
SUBMISSION_NAMESPACE = uuid.UUID('6f0b7d5e-3c1a-4e8b-9f52-6b1d2c9a7e40')


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RatingSubmission(BaseModel):
    """A rating waiting in the queue for verification and persistence."""

    model_config = ConfigDict(populate_by_name=True)

    submission_id: Annotated[str, Field(
        alias='submissionId',
        min_length=1,
        description='Unique identifier of this submission, used as idempotency key'
    )]

    place_id: Annotated[str, Field(
        alias='placeId',
        min_length=1,
        description='Identifier of the rated place'
    )]

    rating: Annotated[float, Field(
        ge=1,
        le=5,
        allow_inf_nan=False,
        description='Submitted rating'
    )]

    recaptcha_token: Annotated[str, Field(
        alias='recaptchaToken',
        description='reCAPTCHA token to verify before applying the rating'
    )]

    ip: Annotated[str, Field(
        description='Client IP address used as rate limit identifier'
    )]

    user_id: Annotated[Optional[str], Field(
        default=None,
        alias='userId',
        description='Signed-in user, enables vote replacement'
    )] = None

    queued_at: Annotated[str, Field(
        alias='queuedAt',
        default_factory=utc_now_iso,
        description='ISO timestamp when the submission was queued'
    )]

    attempts: Annotated[int, Field(
        default=0,
        ge=0,
        description='Number of failed deliveries so far'
    )] = 0

    captcha_verified: Annotated[bool, Field(
        default=False,
        alias='captchaVerified',
        description='Set once the reCAPTCHA and rate limit checks passed, so a requeued delivery skips them'
    )] = False

    @model_validator(mode='before')
    @classmethod
    def derive_submission_id(cls, data: Any) -> Any:
        """Give messages queued without an id a stable one derived from their payload."""
        if isinstance(data, dict) and not (data.get('submissionId') or data.get('submission_id')):
            payload = json.dumps(data, sort_keys=True, default=str)
            data = {**data, 'submissionId': str(uuid.uuid5(SUBMISSION_NAMESPACE, payload))}
        return data

    @classmethod
    def create(
        cls,
        place_id: str,
        rating: float,
        recaptcha_token: str,
        ip: str,
        user_id: Optional[str] = None,
    ) -> 'RatingSubmission':
        """Create a new submission with a generated id and queue timestamp."""
        return cls(
            submission_id=str(uuid.uuid4()),
            place_id=place_id,
            rating=rating,
            recaptcha_token=recaptcha_token,
            ip=ip,
            user_id=user_id,
            queued_at=utc_now_iso(),
        )

    @classmethod
    def from_message(cls, raw: str) -> 'RatingSubmission':
        """Parse a queue payload (raises ValueError on malformed input)."""
        return cls.model_validate(json.loads(raw))

    def to_message(self) -> str:
        """Serialize to the queue wire format."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @property
    def rating_decimal(self) -> Decimal:
        return Decimal(str(self.rating))


class RatingAggregate(BaseModel):
    """Running average rating and vote count stored on a place record."""

    place_id: str
    rating: Decimal = Decimal(0)
    total_votes: int = Field(default=0, ge=0)
    version: int = Field(default=0, ge=0)
    updated_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'RatingAggregate':
        """Build from a DynamoDB place item, tolerating places never rated."""
        return cls(
            place_id=item['id'],
            rating=Decimal(str(item.get('rating') or 0)),
            total_votes=int(item.get('totalVotes') or 0),
            version=int(item.get('ratingVersion') or 0),
            updated_at=item.get('updatedAt'),
        )

    def with_vote(self, rating: Decimal, previous_rating: Optional[Decimal] = None) -> 'RatingAggregate':
        """
        Return the aggregate after applying one vote.

        Args:
            rating: The new vote
            previous_rating: The same user's earlier vote, replaced instead of added

        Returns:
            A new aggregate with the next version number
        """
        if previous_rating is None:
            new_rating, new_total = add_vote(self.rating, self.total_votes, rating)
        else:
            new_rating, new_total = replace_vote(self.rating, self.total_votes, previous_rating, rating)

        return RatingAggregate(
            place_id=self.place_id,
            rating=new_rating,
            total_votes=new_total,
            version=self.version + 1,
            updated_at=utc_now_iso(),
        )


class UserVote(BaseModel):
    """A signed-in user's vote for one place."""

    user_id: str
    place_id: str
    rating: Decimal
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    deleted_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'UserVote':
        return cls(
            user_id=item['userId'],
            place_id=item['placeId'],
            rating=Decimal(str(item['rating'])),
            created_at=item.get('createdAt') or utc_now_iso(),
            updated_at=item.get('updatedAt') or utc_now_iso(),
            deleted_at=item.get('deletedAt'),
        )

    def to_item(self) -> Dict[str, Any]:
        item = {
            'userId': self.user_id,
            'placeId': self.place_id,
            'rating': self.rating,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
        if self.deleted_at:
            item['deletedAt'] = self.deleted_at
        return item

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


class ProcessingOutcome(str, Enum):
    """What happened to a submission once the worker handled it."""

    APPLIED = 'applied'
    UPDATED = 'updated'
    REJECTED_CAPTCHA = 'rejected_captcha'
    RATE_LIMITED = 'rate_limited'
    PLACE_NOT_FOUND = 'place_not_found'

    @property
    def persisted(self) -> bool:
        return self in (ProcessingOutcome.APPLIED, ProcessingOutcome.UPDATED)


class ProcessingResult(BaseModel):
    """Result of processing one rating submission."""

    submission_id: str
    place_id: str
    outcome: ProcessingOutcome
    rating: Optional[float] = None
    total_votes: Optional[int] = None
    detail: Optional[str] = None
