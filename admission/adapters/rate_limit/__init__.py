"""Counter store adapters.

This package provides a small abstraction layer so development and tests
can run on an in-memory store while deployments share counters through
Redis, without changing the decision engine or the HTTP layer.
"""
