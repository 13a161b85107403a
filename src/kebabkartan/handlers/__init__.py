"""
AWS Lambda Handlers Module.

Entry points of the rating pipeline:

- ratings_handler: REST API behind API Gateway (submit, read, health)
- worker_handler: scheduled drain of the rating queue

Handler modules are not imported here so that importing the shared utilities
does not build the API resolver or its clients.
"""
