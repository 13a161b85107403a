"""
Input models for request validation using Pydantic.

This module defines the models used for validating rating submissions posted
by the web front end. Field aliases follow the front end's camelCase JSON.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_RATING = 1
MAX_RATING = 5


class SubmitRatingRequest(BaseModel):
    """Request model for submitting a rating for a place."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    place_id: Annotated[str, Field(
        alias='placeId',
        min_length=1,
        max_length=128,
        description='Identifier of the rated place',
        examples=['b6f1c0de-2d39-4d3e-9d1c-0a4a3f1f0e11']
    )]

    rating: Annotated[float, Field(
        description='Rating between 1 and 5',
        allow_inf_nan=False,
        examples=[4, 4.5]
    )]

    recaptcha_token: Annotated[str, Field(
        alias='recaptchaToken',
        min_length=1,
        max_length=4096,
        description='reCAPTCHA token obtained by the client'
    )]

    user_id: Annotated[str | None, Field(
        default=None,
        alias='userId',
        max_length=128,
        description='Signed-in user submitting the rating, if any'
    )] = None

    @field_validator('rating')
    @classmethod
    def validate_rating_range(cls, v: float) -> float:
        """Validate that the rating is within the star range."""
        if v < MIN_RATING or v > MAX_RATING:
            raise ValueError(f'Rating must be between {MIN_RATING} and {MAX_RATING}')
        return v

    @field_validator('user_id')
    @classmethod
    def blank_user_is_anonymous(cls, v: str | None) -> str | None:
        return v or None
