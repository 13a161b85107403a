"""
Business Logic Layer Module.

This module contains the domain operations of the rating pipeline:

- running_average: pure running-average arithmetic on Decimal values
- rating_service: accepts submissions from the API and queues them
- rating_processor: verifies queued submissions and updates the aggregate

The service and processor modules are imported directly by their callers;
only the dependency-free arithmetic is re-exported here, the domain models
import it.
"""

from kebabkartan.logic.running_average import add_vote, replace_vote

__all__ = [
    "add_vote",
    "replace_vote",
]
