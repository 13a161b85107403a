"""
Rating Models Package

This package contains all Pydantic models used throughout the service,
including input validation models, output response models, and the queue and
aggregate domain models.
"""

from .input import SubmitRatingRequest
from .output import HealthCheckOutput, RatingAggregateOutput, SubmitRatingOutput
from .rating import (
    ProcessingOutcome,
    ProcessingResult,
    RatingAggregate,
    RatingSubmission,
    UserVote,
)

__all__ = [
    # Input models
    "SubmitRatingRequest",

    # Output models
    "SubmitRatingOutput",
    "RatingAggregateOutput",
    "HealthCheckOutput",

    # Domain models
    "RatingSubmission",
    "RatingAggregate",
    "UserVote",
    "ProcessingOutcome",
    "ProcessingResult",
]
