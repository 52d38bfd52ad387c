#!/usr/bin/env python3
"""Generate an encryption key or encrypt a secret for Firestore.

Bot tokens (and the DMData API key) are stored as
{"ciphertext", "iv", "auth_tag"} documents encrypted with AES-256-GCM.

Usage:
    # Generate a new base64 key for SLACK_TOKEN_ENCRYPTION_KEY
    python scripts/encrypt_token.py --generate-key

    # Encrypt a bot token (key read from SLACK_TOKEN_ENCRYPTION_KEY)
    python scripts/encrypt_token.py xoxb-...

    # Check that a stored payload decrypts
    python scripts/encrypt_token.py --decrypt '{"ciphertext": ..., "iv": ..., "auth_tag": ...}'
"""

import argparse
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from anpi.core.crypto import EncryptedPayload, TokenCipher, generate_key
from anpi.errors import CryptoError
from anpi.shell.config_loader import ENCRYPTION_KEY_ENV


def main():
    parser = argparse.ArgumentParser(description="Encrypt secrets for storage in Firestore")
    parser.add_argument("value", nargs="?", help="Plaintext to encrypt")
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="Print a new random 32-byte key (base64)",
    )
    parser.add_argument(
        "--decrypt",
        type=str,
        default=None,
        help="JSON payload to decrypt (prints only whether it succeeds)",
    )
    args = parser.parse_args()

    if args.generate_key:
        print(generate_key())
        return 0

    encoded_key = os.environ.get(ENCRYPTION_KEY_ENV)
    if not encoded_key:
        print(f"{ENCRYPTION_KEY_ENV} is not set", file=sys.stderr)
        return 1

    try:
        cipher = TokenCipher.from_base64(encoded_key)

        if args.decrypt:
            plaintext = cipher.decrypt(EncryptedPayload.from_dict(json.loads(args.decrypt)))
            print(f"OK ({len(plaintext)} characters)")
            return 0

        if not args.value:
            parser.error("a value to encrypt is required")

        print(json.dumps(cipher.encrypt(args.value).to_dict(), indent=2))
        return 0

    except (CryptoError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
