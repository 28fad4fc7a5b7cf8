"""
Bucketgate - a multi-tenant gateway to customer-owned object storage.

This package contains the complete application:
- core: Framework-agnostic upload, credential and accounting logic
- infrastructure: Snowflake persistence and S3/R2 adapters
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
