"""
Application configuration.

Settings come from environment variables (or a .env file); mock modes
let the API run without Snowflake or real buckets.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
