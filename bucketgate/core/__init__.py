"""
Core gateway logic.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake
or boto3. Persistence and bucket access arrive through protocols, so the
whole upload lifecycle can be tested with in-memory collaborators.
"""
