"""
Data Access Layer (DAL) for DynamoDB operations.

This module provides a thin table wrapper with consistent error translation,
tracing and metrics. Callers work with plain Python items and get
service errors instead of botocore exceptions.
"""

import functools
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import boto3
from aws_lambda_powertools.metrics import MetricUnit
from botocore.exceptions import BotoCoreError, ClientError

from kebabkartan.handlers.utils.errors import (
    BaseServiceError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ExternalServiceError,
)
from kebabkartan.handlers.utils.observability import logger, metrics, tracer


class DALError(BaseServiceError):
    """Base exception for Data Access Layer errors."""

    def __init__(
        self,
        message: str,
        operation: str,
        table_name: str,
        error_code: str = "DAL_ERROR",
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[ErrorContext] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            category=ErrorCategory.INFRASTRUCTURE,
            context=context,
            retry_after=retry_after,
            user_message="A database error occurred. Please try again later.",
        )
        self.operation = operation
        self.table_name = table_name


class ConditionalCheckFailedError(DALError):
    """Raised when a conditional write finds the item changed or missing."""

    def __init__(
        self,
        table_name: str,
        condition: str,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=f"Conditional check failed: {condition}",
            operation="conditional_write",
            table_name=table_name,
            error_code="CONDITIONAL_CHECK_FAILED",
            severity=ErrorSeverity.MEDIUM,
            context=context,
        )
        self.condition = condition


def _is_condition_cancellation(error: ClientError) -> bool:
    reasons = error.response.get('CancellationReasons') or []
    return any(reason.get('Code') == 'ConditionalCheckFailed' for reason in reasons) or \
        'ConditionalCheckFailed' in error.response['Error'].get('Message', '')


class BaseDAL(ABC):
    """Abstract base class for Data Access Layer implementations."""

    @abstractmethod
    def get_item(self, key: Dict[str, Any], consistent_read: bool = False) -> Optional[Dict[str, Any]]:
        """Get a single item by key."""
        pass

    @abstractmethod
    def update_item(self, key: Dict[str, Any], update_expression: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        """Update attributes of an item."""
        pass


class DynamoDBHandler(BaseDAL):
    """DynamoDB table handler with error translation and observability."""

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        """
        Initialize DynamoDB handler.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region name
            endpoint_url: DynamoDB endpoint URL (for local testing)
        """
        self.table_name = table_name

        resource_config: Dict[str, Any] = {}
        if region_name:
            resource_config['region_name'] = region_name
        if endpoint_url:
            resource_config['endpoint_url'] = endpoint_url

        self.dynamodb = boto3.resource('dynamodb', **resource_config)
        self.table = self.dynamodb.Table(table_name)
        # The resource's client applies the same Python <-> AttributeValue
        # translation as the Table API, including in transact_write_items.
        self.client = self.dynamodb.meta.client

        logger.debug("DynamoDB handler initialized", extra={
            "table_name": table_name,
            "region_name": region_name,
            "endpoint_url": endpoint_url,
        })

    def _handle_dynamodb_errors(self, operation: str, context: Optional[ErrorContext] = None) -> Callable:
        """Decorator to handle DynamoDB errors consistently."""

        def decorator(func: Callable) -> Callable:
            @functools.wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                operation_start = time.time()

                try:
                    result = func(*args, **kwargs)

                    operation_duration = (time.time() - operation_start) * 1000
                    metrics.add_metric(name=f"DynamoDB{operation}Duration", unit=MetricUnit.Milliseconds, value=operation_duration)
                    tracer.put_annotation("dynamodb_operation", operation)

                    return result

                except ClientError as e:
                    error_code = e.response['Error']['Code']
                    error_message = e.response['Error'].get('Message', '')

                    if error_code == 'ConditionalCheckFailedException' or (
                        error_code == 'TransactionCanceledException' and _is_condition_cancellation(e)
                    ):
                        logger.debug(f"DynamoDB {operation} condition not met", extra={
                            "table_name": self.table_name,
                            "error_code": error_code,
                        })
                        raise ConditionalCheckFailedError(
                            table_name=self.table_name,
                            condition="Item condition check failed",
                            context=context,
                        ) from e

                    metrics.add_metric(name=f"DynamoDB{operation}Error", unit=MetricUnit.Count, value=1)
                    logger.error(f"DynamoDB {operation} error", extra={
                        "error_code": error_code,
                        "error_message": error_message,
                        "table_name": self.table_name,
                        "operation": operation,
                    })

                    if error_code == 'ResourceNotFoundException':
                        raise DALError(
                            message=f"Table {self.table_name} not found",
                            operation=operation,
                            table_name=self.table_name,
                            error_code="TABLE_NOT_FOUND",
                            context=context,
                        ) from e
                    elif error_code in ('ProvisionedThroughputExceededException', 'ThrottlingException'):
                        raise DALError(
                            message="DynamoDB throttling detected",
                            operation=operation,
                            table_name=self.table_name,
                            error_code="THROTTLING_ERROR",
                            context=context,
                            retry_after=30,
                        ) from e
                    else:
                        raise DALError(
                            message=f"DynamoDB error: {error_message}",
                            operation=operation,
                            table_name=self.table_name,
                            error_code=f"DYNAMODB_{error_code}",
                            context=context,
                        ) from e

                except BotoCoreError as e:
                    metrics.add_metric(name=f"DynamoDB{operation}Error", unit=MetricUnit.Count, value=1)
                    logger.error(f"DynamoDB connection error during {operation}", extra={
                        "error": str(e),
                        "table_name": self.table_name,
                    })
                    raise ExternalServiceError(
                        message=f"Database connection error: {str(e)}",
                        service_name="DynamoDB",
                        error_code="DATABASE_CONNECTION_ERROR",
                        context=context,
                    ) from e

            return wrapper
        return decorator

    @tracer.capture_method
    def get_item(
        self,
        key: Dict[str, Any],
        consistent_read: bool = False,
        attributes_to_get: Optional[List[str]] = None,
        context: Optional[ErrorContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Get a single item from DynamoDB.

        Args:
            key: Primary key of the item to retrieve
            consistent_read: Whether to use strongly consistent read
            attributes_to_get: Specific attributes to retrieve
            context: Error context for tracing

        Returns:
            Item data or None if not found
        """

        @self._handle_dynamodb_errors("GetItem", context)
        def _get_item() -> Optional[Dict[str, Any]]:
            get_item_kwargs: Dict[str, Any] = {
                'Key': key,
                'ConsistentRead': consistent_read,
            }

            if attributes_to_get:
                get_item_kwargs['ProjectionExpression'] = ', '.join(f'#a{i}' for i in range(len(attributes_to_get)))
                get_item_kwargs['ExpressionAttributeNames'] = {
                    f'#a{i}': name for i, name in enumerate(attributes_to_get)
                }

            response = self.table.get_item(**get_item_kwargs)
            return response.get('Item')

        return _get_item()

    @tracer.capture_method
    def update_item(
        self,
        key: Dict[str, Any],
        update_expression: str,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[Any] = None,
        return_values: str = "ALL_NEW",
        context: Optional[ErrorContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Update an item in DynamoDB.

        Args:
            key: Primary key of the item to update
            update_expression: Update expression
            expression_attribute_values: Expression attribute values
            expression_attribute_names: Expression attribute names
            condition_expression: Conditional expression for the update
            return_values: What values to return after update
            context: Error context for tracing

        Returns:
            Updated item data or None

        Raises:
            ConditionalCheckFailedError: If condition check fails
        """
        update_kwargs: Dict[str, Any] = {
            'Key': key,
            'UpdateExpression': update_expression,
            'ReturnValues': return_values,
        }
        if expression_attribute_values:
            update_kwargs['ExpressionAttributeValues'] = expression_attribute_values
        if expression_attribute_names:
            update_kwargs['ExpressionAttributeNames'] = expression_attribute_names
        if condition_expression:
            update_kwargs['ConditionExpression'] = condition_expression

        @self._handle_dynamodb_errors("UpdateItem", context)
        def _update_item() -> Optional[Dict[str, Any]]:
            response = self.table.update_item(**update_kwargs)
            return response.get('Attributes')

        return _update_item()

    @tracer.capture_method
    def transact_write(
        self,
        transact_items: List[Dict[str, Any]],
        context: Optional[ErrorContext] = None,
    ) -> None:
        """
        Write several items atomically.

        Args:
            transact_items: TransactWriteItems entries using plain Python values

        Raises:
            ConditionalCheckFailedError: If any condition in the transaction fails
        """

        @self._handle_dynamodb_errors("TransactWriteItems", context)
        def _transact_write() -> None:
            self.client.transact_write_items(TransactItems=transact_items)

        _transact_write()

    @tracer.capture_method
    def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on the DynamoDB table.

        Returns:
            Health check results
        """
        try:
            start_time = time.time()

            table_status = self.client.describe_table(TableName=self.table_name)['Table'].get('TableStatus', 'UNKNOWN')
            duration_ms = (time.time() - start_time) * 1000

            return {
                'status': 'healthy' if table_status == 'ACTIVE' else 'unhealthy',
                'table_name': self.table_name,
                'table_status': table_status,
                'response_time_ms': round(duration_ms, 2),
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }

        except (ClientError, BotoCoreError) as e:
            logger.error("Health check failed", extra={"table_name": self.table_name, "error": str(e)})
            return {
                'status': 'unhealthy',
                'table_name': self.table_name,
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }
