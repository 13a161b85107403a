"""Running average arithmetic for the rating aggregate."""

from decimal import Decimal
from typing import Tuple

MIN_AVERAGE = Decimal(1)
MAX_AVERAGE = Decimal(5)


def _clamp(value: Decimal) -> Decimal:
    return max(MIN_AVERAGE, min(MAX_AVERAGE, value))


def add_vote(average: Decimal, total_votes: int, rating: Decimal) -> Tuple[Decimal, int]:
    """
    Fold one new vote into a running average.

    Args:
        average: Current average, ignored when there are no votes yet
        total_votes: Number of votes behind the current average
        rating: The new vote

    Returns:
        Tuple of (new average, new vote count)
    """
    if total_votes <= 0:
        return rating, 1

    new_total = total_votes + 1
    new_average = (average * total_votes + rating) / new_total
    return _clamp(new_average), new_total


def replace_vote(
    average: Decimal,
    total_votes: int,
    previous_rating: Decimal,
    rating: Decimal,
) -> Tuple[Decimal, int]:
    """
    Swap a user's earlier vote for a new one without changing the vote count.

    Falls back to add_vote when the aggregate holds no votes, which happens if
    a vote record outlived a reset of the place's counters.
    """
    if total_votes <= 0:
        return add_vote(average, total_votes, rating)

    new_average = (average * total_votes - previous_rating + rating) / total_votes
    return _clamp(new_average), total_votes
