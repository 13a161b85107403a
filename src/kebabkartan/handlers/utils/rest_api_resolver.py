"""
REST API resolver utility for the ratings API.

This module provides a configured API Gateway REST resolver with CORS and
OpenAPI documentation support.
"""

from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig
from aws_lambda_powertools.event_handler.openapi.models import Tag

# API path constants
RATINGS_PATH = '/ratings'
HEALTH_PATH = '/health'
SWAGGER_PATH = '/swagger'

# OpenAPI tags for documentation
RATINGS_TAG = Tag(name='Ratings', description='Rating submission and lookup')
HEALTH_TAG = Tag(name='Health', description='Health check operations')

cors_config = CORSConfig(
    allow_origin='*',
    max_age=600,
    expose_headers=['Location', 'Retry-After'],
    allow_headers=['content-type', 'x-forwarded-for'],
)

# Configure API Gateway REST resolver with OpenAPI support
app = APIGatewayRestResolver(
    cors=cors_config,
    enable_validation=True,
    debug=False,
)

# Configure OpenAPI documentation
app.enable_swagger(
    path=SWAGGER_PATH,
    title='Kebabkartan Ratings API',
    version='1.0.0',
    description='Accepts place ratings for asynchronous processing and serves current averages',
    tags=[RATINGS_TAG, HEALTH_TAG],
)
