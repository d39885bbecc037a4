"""Infrastructure Layer: store, cache, credentials and logging adapters.

Invariants:
    - Driver failures are translated to core errors at this boundary
    - The cache is optional: every cache call degrades instead of raising

Design Decisions:
    - Resilient wrappers over raw clients (SQLAlchemy async engine, redis.asyncio, PyJWT)
"""
