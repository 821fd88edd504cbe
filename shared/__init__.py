"""
Shared utilities for the Generic Cache Server.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service shell (middleware, health, metrics, handlers)

Any cross-service logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""

SERVICE_VERSION = "0.1.0"
