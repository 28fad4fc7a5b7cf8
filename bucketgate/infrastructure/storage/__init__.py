"""
Object storage adapters for customer buckets.

Supports S3 (AWS or any S3-compatible endpoint) and R2 (Cloudflare) via
the S3 API. Includes an in-memory mock for local development.
"""

from .client import (
    MockStorageAdapter,
    MockStorageBackend,
    R2StorageAdapter,
    S3StorageAdapter,
    StorageAdapter,
    StorageConfig,
    create_storage_adapter,
)

__all__ = [
    "MockStorageAdapter",
    "MockStorageBackend",
    "R2StorageAdapter",
    "S3StorageAdapter",
    "StorageAdapter",
    "StorageConfig",
    "create_storage_adapter",
]
