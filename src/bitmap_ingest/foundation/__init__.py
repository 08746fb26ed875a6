"""Foundation utilities for shared infrastructure components.

This package provides shared utilities including:
- HTTP session factory with connection pooling
- Structured JSON logging
- Retry classification and logging helpers
- Circuit breaker patterns
"""
