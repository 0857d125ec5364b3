"""
Shared utilities for the User Profile service.

This package holds the building blocks the service is assembled from:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI application scaffold
- test_helpers: Signing keys, tokens and fakes for tests

Do not import from service packages into shared/.
"""
