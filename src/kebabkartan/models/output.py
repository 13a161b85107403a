"""
Output models for API responses using Pydantic.

This module defines the models used for structuring responses from the
ratings API, following the front end's camelCase JSON.
"""

from typing import Annotated, Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class SubmitRatingOutput(BaseModel):
    """Response model for an accepted rating submission."""

    model_config = ConfigDict(populate_by_name=True)

    submission_id: Annotated[str, Field(
        alias='submissionId',
        description='Identifier of the queued submission'
    )]

    place_id: Annotated[str, Field(
        alias='placeId',
        description='Identifier of the rated place'
    )]

    status: Annotated[str, Field(
        default='queued',
        description='Submission status',
        examples=['queued']
    )] = 'queued'

    queued_at: Annotated[str, Field(
        alias='queuedAt',
        description='ISO timestamp when the submission was queued'
    )]


class RatingAggregateOutput(BaseModel):
    """Response model for a place's current rating."""

    model_config = ConfigDict(populate_by_name=True)

    place_id: Annotated[str, Field(
        alias='placeId',
        description='Identifier of the place'
    )]

    rating: Annotated[float, Field(
        description='Average rating, rounded to two decimals',
        examples=[4.25]
    )]

    total_votes: Annotated[int, Field(
        alias='totalVotes',
        description='Number of votes behind the average',
        examples=[12]
    )]

    updated_at: Annotated[str | None, Field(
        default=None,
        alias='updatedAt',
        description='ISO timestamp of the last rating update'
    )] = None


class HealthCheckOutput(BaseModel):
    """Response model for the health check endpoint."""

    status: Annotated[str, Field(
        description='Overall service health',
        examples=['healthy', 'unhealthy']
    )]

    timestamp: Annotated[str, Field(
        description='ISO timestamp of the check'
    )]

    environment: Annotated[str, Field(
        description='Deployment environment'
    )]

    checks: Annotated[Dict[str, Any], Field(
        default_factory=dict,
        description='Per-component health details'
    )]
