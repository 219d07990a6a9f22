"""
Shared utilities for the RetroLens access layer.

This package aggregates common building blocks consumed by the session layer:

- config: Client configuration via pydantic-settings
- logging: Structured logging with session correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators and backoff policies
- circuit_breaker: Resilient external call protection
- test_helpers: Fakes and factories for the test suites

Any cross-cutting logic should live here to avoid import cycles. Apart from
test_helpers, nothing here imports from service_* packages.
"""
