#!/usr/bin/env python3
"""
Create the Snowflake tables used by the gateway repositories.

Every statement is CREATE TABLE IF NOT EXISTS, so the script can be
re-run safely against an existing schema.

Usage:
    python scripts/init_schema.py
    python scripts/init_schema.py --dry-run

Requires:
    - .env file with Snowflake credentials
"""

import argparse
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from bucketgate.api.dependencies import snowflake_config_from_settings
from bucketgate.config.settings import get_settings
from bucketgate.infrastructure.snowflake.client import (
    SnowflakeConnectionError,
    get_snowflake_connection,
)
from bucketgate.infrastructure.snowflake.schema import SCHEMA_STATEMENTS


def _table_name(statement: str) -> str:
    words = statement.split()
    return words[5] if len(words) > 5 else "?"


def apply_schema(dry_run: bool = False) -> bool:
    settings = get_settings()

    if dry_run:
        print("\n=== DRY RUN - No statements will be executed ===\n")
        for statement in SCHEMA_STATEMENTS:
            print(statement.strip())
            print()
        print(f"Total: {len(SCHEMA_STATEMENTS)} statements")
        return True

    if not settings.snowflake_account or not settings.snowflake_user:
        print("ERROR: Missing SNOWFLAKE_ACCOUNT or SNOWFLAKE_USER")
        return False

    print(f"Connecting to Snowflake account: {settings.snowflake_account}")
    print(f"Using database {settings.snowflake_database}, schema {settings.snowflake_schema}")

    errors = 0
    try:
        with get_snowflake_connection(snowflake_config_from_settings(settings)) as conn:
            cursor = conn.cursor()
            try:
                for statement in SCHEMA_STATEMENTS:
                    name = _table_name(statement)
                    try:
                        cursor.execute(statement)
                        print(f"[OK] {name}")
                    except Exception as e:
                        errors += 1
                        print(f"[ERR] {name}: {e}")
                conn.commit()
            finally:
                cursor.close()
    except SnowflakeConnectionError as e:
        print(f"ERROR connecting to Snowflake: {e}")
        return False

    print(f"\n=== Schema Complete ===")
    print(f"Statements: {len(SCHEMA_STATEMENTS)}")
    print(f"Errors: {errors}")

    return errors == 0


def main():
    parser = argparse.ArgumentParser(description='Create gateway tables in Snowflake')
    parser.add_argument('--dry-run', action='store_true', help='Print statements only')
    args = parser.parse_args()

    success = apply_schema(dry_run=args.dry_run)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
