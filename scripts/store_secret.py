#!/usr/bin/env python3
"""
Store an encrypted secret (for example the Redis access key) in the cache
service secrets file.

The file is read by the service at startup when ``CACHE_REDIS_ACCESS_KEY`` is
not set in the environment. Values are encrypted with a key derived from
``CACHE_MASTER_KEY``.
"""

import argparse
import getpass
import os
import sys

from cache_common.errors import ConfigInvalidError
from cache_common.secrets_manager import SecretsManager


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Encrypt and store a cache service secret.")
    parser.add_argument("--key", default="REDIS_ACCESS_KEY", help="Secret name")
    parser.add_argument("--secrets-file", default=os.getenv("CACHE_SECRETS_FILE", "secrets.json"), help="Path to the secrets file")
    parser.add_argument("--value", default=None, help="Secret value (prompted when omitted)")
    parser.add_argument("--verify", action="store_true", help="Read the secret back after writing")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    value = args.value if args.value is not None else getpass.getpass(f"{args.key}: ")
    if not value:
        print("[store-secret] empty value, nothing written", file=sys.stderr)
        return 1

    try:
        manager = SecretsManager(secrets_file=args.secrets_file)
        manager.set_secret(args.key, value)
    except ConfigInvalidError as exc:
        print(f"[store-secret] failed: {exc.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    if args.verify:
        stored = manager.decrypt_secret(manager.load_secrets_file()[args.key])
        if stored != value:
            print("[store-secret] verification failed", file=sys.stderr)
            return 1

    print(f"[store-secret] stored {args.key} in {args.secrets_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
