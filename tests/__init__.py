"""
aithrottle test suite.

This package contains tests for:
- Priority queue and admission scheduler
- Response/embedding cache and TTL store
- Gateway and decorators
- Metric hooks
"""
