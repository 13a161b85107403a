"""
DynamoDB access for rating aggregates and per-user votes.

The places table is shared with the web front end, which reads ``rating``,
``totalVotes`` and ``updatedAt`` straight from each place item. Writes here
touch only those attributes plus ``ratingVersion``, the optimistic-lock
counter that turns the read-modify-write update into a compare-and-swap.
"""

from typing import Any, Dict, Optional

from kebabkartan.dal import BaseRatingsDal
from kebabkartan.dal.dynamodb_handler import DynamoDBHandler
from kebabkartan.handlers.utils.errors import ErrorContext
from kebabkartan.handlers.utils.observability import logger, tracer
from kebabkartan.models.rating import RatingAggregate, UserVote

AGGREGATE_ATTRIBUTES = ['id', 'rating', 'totalVotes', 'ratingVersion', 'updatedAt']

AGGREGATE_UPDATE_EXPRESSION = (
    'SET #rating = :rating, #totalVotes = :totalVotes, '
    '#ratingVersion = :newVersion, #updatedAt = :updatedAt'
)

AGGREGATE_CONDITION_EXPRESSION = (
    'attribute_exists(#id) AND '
    '(attribute_not_exists(#ratingVersion) OR #ratingVersion = :expectedVersion)'
)

AGGREGATE_ATTRIBUTE_NAMES = {
    '#id': 'id',
    '#rating': 'rating',
    '#totalVotes': 'totalVotes',
    '#ratingVersion': 'ratingVersion',
    '#updatedAt': 'updatedAt',
}


class RatingsDal(BaseRatingsDal):
    """Rating aggregate and user vote persistence on DynamoDB."""

    def __init__(
        self,
        places_table: DynamoDBHandler,
        user_votes_table: DynamoDBHandler,
    ) -> None:
        super().__init__(places_table.table_name)
        self.places = places_table
        self.user_votes = user_votes_table

    @tracer.capture_method
    def get_aggregate(self, place_id: str, context: Optional[ErrorContext] = None) -> Optional[RatingAggregate]:
        """
        Read a place's rating aggregate with a strongly consistent read.

        Args:
            place_id: Identifier of the place

        Returns:
            The aggregate, or None when the place does not exist
        """
        item = self.places.get_item(
            key={'id': place_id},
            consistent_read=True,
            attributes_to_get=AGGREGATE_ATTRIBUTES,
            context=context,
        )
        if not item:
            logger.info("Place not found", extra={"place_id": place_id})
            return None

        return RatingAggregate.from_item(item)

    @tracer.capture_method
    def get_user_vote(
        self,
        user_id: str,
        place_id: str,
        context: Optional[ErrorContext] = None,
    ) -> Optional[UserVote]:
        """Return the user's active vote for a place, ignoring soft-deleted votes."""
        item = self.user_votes.get_item(
            key={'userId': user_id, 'placeId': place_id},
            consistent_read=True,
            context=context,
        )
        if not item:
            return None

        vote = UserVote.from_item(item)
        return vote if vote.is_active else None

    @tracer.capture_method
    def save_aggregate(
        self,
        current: RatingAggregate,
        updated: RatingAggregate,
        vote: Optional[UserVote] = None,
        context: Optional[ErrorContext] = None,
    ) -> RatingAggregate:
        """
        Persist an updated aggregate if nobody changed it since it was read.

        Args:
            current: Aggregate as read, its version is the expected version
            updated: Aggregate to store
            vote: User vote to store in the same transaction

        Returns:
            The stored aggregate

        Raises:
            ConditionalCheckFailedError: If the place changed or vanished meanwhile
        """
        values: Dict[str, Any] = {
            ':rating': updated.rating,
            ':totalVotes': updated.total_votes,
            ':newVersion': updated.version,
            ':updatedAt': updated.updated_at,
            ':expectedVersion': current.version,
        }

        if vote is None:
            self.places.update_item(
                key={'id': current.place_id},
                update_expression=AGGREGATE_UPDATE_EXPRESSION,
                expression_attribute_values=values,
                expression_attribute_names=AGGREGATE_ATTRIBUTE_NAMES,
                condition_expression=AGGREGATE_CONDITION_EXPRESSION,
                return_values='NONE',
                context=context,
            )
        else:
            self.places.transact_write(
                transact_items=[
                    {
                        'Update': {
                            'TableName': self.places.table_name,
                            'Key': {'id': current.place_id},
                            'UpdateExpression': AGGREGATE_UPDATE_EXPRESSION,
                            'ConditionExpression': AGGREGATE_CONDITION_EXPRESSION,
                            'ExpressionAttributeNames': AGGREGATE_ATTRIBUTE_NAMES,
                            'ExpressionAttributeValues': values,
                        }
                    },
                    {
                        'Put': {
                            'TableName': self.user_votes.table_name,
                            'Item': vote.to_item(),
                        }
                    },
                ],
                context=context,
            )

        logger.info("Rating aggregate saved", extra={
            "place_id": current.place_id,
            "total_votes": updated.total_votes,
            "version": updated.version,
            "user_vote": vote is not None,
        })
        tracer.put_annotation("place_id", current.place_id)

        return updated

    def health_check(self) -> Dict[str, Any]:
        return self.places.health_check()
