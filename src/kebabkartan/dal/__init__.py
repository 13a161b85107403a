"""
Data Access Layer (DAL) for the ratings service.

This module provides the data access layer interfaces and factory functions
for rating aggregate persistence.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from kebabkartan.models.rating import RatingAggregate, UserVote


@runtime_checkable
class RatingsStore(Protocol):
    """Protocol defining the rating persistence interface."""

    def get_aggregate(self, place_id: str) -> 'RatingAggregate | None':
        """Read a place's rating aggregate."""
        ...

    def get_user_vote(self, user_id: str, place_id: str) -> 'UserVote | None':
        """Read a user's active vote for a place."""
        ...

    def save_aggregate(
        self,
        current: 'RatingAggregate',
        updated: 'RatingAggregate',
        vote: 'UserVote | None' = None,
    ) -> 'RatingAggregate':
        """Compare-and-swap the aggregate, optionally storing the user's vote."""
        ...


class BaseRatingsDal(ABC):
    """Abstract base class for rating persistence implementations."""

    def __init__(self, table_name: str) -> None:
        """
        Initialize the DAL handler.

        Args:
            table_name: Name of the places table
        """
        self.table_name = table_name

    @abstractmethod
    def get_aggregate(self, place_id: str) -> 'Optional[RatingAggregate]':
        pass

    @abstractmethod
    def get_user_vote(self, user_id: str, place_id: str) -> 'Optional[UserVote]':
        pass

    @abstractmethod
    def save_aggregate(
        self,
        current: 'RatingAggregate',
        updated: 'RatingAggregate',
        vote: 'Optional[UserVote]' = None,
    ) -> 'RatingAggregate':
        pass

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the data store."""
        pass


def get_ratings_dal(
    table_name: str,
    user_votes_table_name: str,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> BaseRatingsDal:
    """
    Factory function to get the ratings DAL.

    Args:
        table_name: Name of the places table
        user_votes_table_name: Name of the per-user votes table
        region_name: AWS region
        endpoint_url: DynamoDB endpoint override

    Returns:
        DAL handler instance
    """
    # Import here to avoid circular imports
    from kebabkartan.dal.dynamodb_handler import DynamoDBHandler
    from kebabkartan.dal.ratings_dal import RatingsDal

    return RatingsDal(
        places_table=DynamoDBHandler(table_name, region_name=region_name, endpoint_url=endpoint_url),
        user_votes_table=DynamoDBHandler(user_votes_table_name, region_name=region_name, endpoint_url=endpoint_url),
    )


__all__ = [
    'RatingsStore',
    'BaseRatingsDal',
    'get_ratings_dal',
]
