#!/usr/bin/env python3
"""
Encrypt bucket credentials for the buckets table.

The gateway only ever stores access keys as vault blobs
(v1:<nonce>:<ciphertext>). This script produces those blobs, and can
generate a fresh vault key for a new deployment.

Usage:
    python scripts/encrypt_credentials.py generate-key
    python scripts/encrypt_credentials.py encrypt --access-key AKIA... --secret-key ...
    python scripts/encrypt_credentials.py encrypt --access-key ... --secret-key ... \\
        --provider r2 --bucket my-bucket --endpoint https://<account>.r2.cloudflarestorage.com --sql

Requires:
    - CREDENTIALS_ENCRYPTION_KEY in the environment or .env (or --key)
"""

import argparse
import os
import sys
import uuid
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from bucketgate.core.crypto import CredentialVault, generate_key, is_encrypted
from bucketgate.core.errors import ConfigurationError

# Load environment variables
load_dotenv()


def _sql_literal(value):
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def build_bucket_insert(
    provider: str,
    bucket_name: str,
    encrypted_access_key: str,
    encrypted_secret_key: str,
    region=None,
    endpoint=None,
) -> str:
    """INSERT statement for a new row in the buckets table."""
    values = ", ".join(_sql_literal(v) for v in (
        str(uuid.uuid4()),
        provider,
        bucket_name,
        region,
        endpoint,
        encrypted_access_key,
        encrypted_secret_key,
    ))
    return (
        "INSERT INTO buckets (bucket_id, provider, bucket_name, region, endpoint, "
        f"encrypted_access_key, encrypted_secret_key) VALUES ({values});"
    )


def encrypt_pair(vault: CredentialVault, access_key: str, secret_key: str) -> tuple[str, str]:
    """
    Encrypt an access/secret key pair.

    Values that already carry a cipher tag are passed through unchanged,
    so running the script twice on the same input is harmless.
    """
    encrypted = []
    for value in (access_key, secret_key):
        if is_encrypted(value):
            print("Value is already encrypted, leaving it unchanged", file=sys.stderr)
            encrypted.append(value)
        else:
            encrypted.append(vault.encrypt(value))
    return encrypted[0], encrypted[1]


def main():
    parser = argparse.ArgumentParser(description='Manage encrypted bucket credentials')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('generate-key', help='Print a new vault key')

    encrypt = subparsers.add_parser('encrypt', help='Encrypt an access/secret key pair')
    encrypt.add_argument('--access-key', required=True, help='Bucket access key id')
    encrypt.add_argument('--secret-key', required=True, help='Bucket secret access key')
    encrypt.add_argument('--key', help='Vault key (defaults to CREDENTIALS_ENCRYPTION_KEY)')
    encrypt.add_argument('--sql', action='store_true', help='Print an INSERT for the buckets table')
    encrypt.add_argument('--provider', choices=['s3', 'r2'], default='s3')
    encrypt.add_argument('--bucket', help='Bucket name (required with --sql)')
    encrypt.add_argument('--region', help='Bucket region')
    encrypt.add_argument('--endpoint', help='Custom endpoint URL (R2, MinIO...)')
    args = parser.parse_args()

    if args.command == 'generate-key':
        print(generate_key())
        return

    encoded_key = args.key or os.getenv('CREDENTIALS_ENCRYPTION_KEY')
    if not encoded_key:
        print("ERROR: Missing CREDENTIALS_ENCRYPTION_KEY (or pass --key)")
        sys.exit(1)

    try:
        vault = CredentialVault(encoded_key)
    except ConfigurationError as e:
        print(f"ERROR: {e.message}")
        sys.exit(1)

    encrypted_access, encrypted_secret = encrypt_pair(vault, args.access_key, args.secret_key)

    if args.sql:
        if not args.bucket:
            print("ERROR: --bucket is required with --sql")
            sys.exit(1)
        print(build_bucket_insert(
            args.provider,
            args.bucket,
            encrypted_access,
            encrypted_secret,
            region=args.region,
            endpoint=args.endpoint,
        ))
        return

    print(f"encrypted_access_key: {encrypted_access}")
    print(f"encrypted_secret_key: {encrypted_secret}")


if __name__ == '__main__':
    main()
