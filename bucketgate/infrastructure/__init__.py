"""
Infrastructure layer - external service integrations.

- snowflake: Database persistence
- storage: Object storage (S3/R2)
- memory: In-memory repositories for mock mode and tests

These wrappers translate between external formats and our domain models.
"""
