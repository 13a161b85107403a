"""
Kebabkartan rating pipeline.

Ratings posted by the web front end are validated and queued on Redis by the
API handler; a background worker re-verifies each one (reCAPTCHA and per-IP
rate limit) and folds it into the place's running average in DynamoDB.

- handlers: API and scheduled Lambda entry points
- logic: Business logic and domain operations
- dal: Data access layer for persistence
- models: Data models and schemas
- queue: Redis work queue
- security: reCAPTCHA verification and rate limiting
- worker: Queue consumer and its command line entry point
"""

__version__ = "1.0.0"
