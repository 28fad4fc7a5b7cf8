"""Snowflake connection, schema and repositories."""
