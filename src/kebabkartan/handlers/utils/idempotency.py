"""
Idempotency utilities for rating processing.

Rating messages are delivered at least once, and the reCAPTCHA token they carry
can only be verified a single time. Wrapping processing with Powertools
idempotency keyed on the submission id makes a redelivered message return the
stored result instead of applying the vote twice.
"""

from typing import Callable, Optional

from aws_lambda_powertools.utilities.idempotency import (
    DynamoDBPersistenceLayer,
    IdempotencyConfig,
    idempotent_function,
)
from aws_lambda_powertools.utilities.idempotency.serialization.pydantic import PydanticSerializer
from aws_lambda_powertools.utilities.typing import LambdaContext

from kebabkartan.handlers.utils.observability import logger


class InProgressTimeout:
    """
    Time budget for one processing attempt outside Lambda.

    Powertools only asks the Lambda context for the remaining time, which sets
    when an INPROGRESS record may be taken over by another attempt. Without it
    a worker crash leaves the record in progress until the whole record expires.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds

    def get_remaining_time_in_millis(self) -> int:
        return int(self.seconds * 1000)


class IdempotencyManager:
    """Manager for handling idempotency patterns."""

    def __init__(
        self,
        table_name: str,
        event_key_jmespath: str = "submission_id",
        expires_after_seconds: int = 24 * 3600,
        use_local_cache: bool = True,
        local_cache_max_items: int = 1000,
        hash_function: str = "md5",
    ):
        """
        Initialize idempotency manager.

        Args:
            table_name: DynamoDB table name for persistence
            event_key_jmespath: JMESPath to extract the idempotency key from the payload
            expires_after_seconds: How long to keep idempotency records
            use_local_cache: Whether to use local caching
            local_cache_max_items: Maximum items in local cache
            hash_function: Hash function for generating keys
        """
        self.persistence_layer = DynamoDBPersistenceLayer(table_name=table_name)

        self.config = IdempotencyConfig(
            event_key_jmespath=event_key_jmespath,
            raise_on_no_idempotency_key=True,
            expires_after_seconds=expires_after_seconds,
            use_local_cache=use_local_cache,
            local_cache_max_items=local_cache_max_items,
            hash_function=hash_function,
        )

        logger.debug("Idempotency manager initialized", extra={"table_name": table_name})

    def make_idempotent(self, func: Callable, data_keyword_argument: str = "submission") -> Callable:
        """
        Wrap a function so repeated calls with the same payload key run once.

        The wrapped function must take its payload as a keyword argument and
        return a Pydantic model, which is rebuilt from the stored record on replay.
        """
        return idempotent_function(
            data_keyword_argument=data_keyword_argument,
            persistence_store=self.persistence_layer,
            config=self.config,
            output_serializer=PydanticSerializer,
        )(func)

    def register_lambda_context(self, context: LambdaContext) -> None:
        """Let in-progress records expire with the Lambda invocation."""
        self.config.register_lambda_context(context)

    def register_in_progress_timeout(self, seconds: float) -> None:
        """Let in-progress records expire after a fixed time when running outside Lambda."""
        self.config.register_lambda_context(InProgressTimeout(seconds))
        logger.debug("Idempotency in-progress timeout set", extra={"seconds": seconds})


_idempotency_manager: Optional[IdempotencyManager] = None


def get_idempotency_manager(table_name: str) -> IdempotencyManager:
    """Get or create the process-wide idempotency manager."""
    global _idempotency_manager

    if _idempotency_manager is None:
        _idempotency_manager = IdempotencyManager(table_name=table_name)

    return _idempotency_manager
