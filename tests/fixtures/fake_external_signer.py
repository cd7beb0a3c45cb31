#!/usr/bin/env python3
"""
Fake external signer for tests.

Reads 0x-hex(digest) from stdin and writes 0x-hex(r || s || v) to stdout.

Key is taken from FAKE_SIGNER_KEY_HEX (32-byte hex). If not provided,
a deterministic default is used.
"""
import os
import sys

from eth_utils import decode_hex

from eat_gateway.signatures import sign_hash

DEFAULT_KEY_HEX = "1f" * 32


def main():
    key_hex = (os.getenv("FAKE_SIGNER_KEY_HEX") or DEFAULT_KEY_HEX).strip()
    try:
        key = decode_hex(key_hex)
    except ValueError:
        print("invalid key hex", file=sys.stderr)
        return 2
    if len(key) != 32:
        print("key must be 32 bytes", file=sys.stderr)
        return 2

    try:
        digest = decode_hex(sys.stdin.read().strip())
    except ValueError:
        print("invalid hex digest", file=sys.stderr)
        return 2
    if len(digest) != 32:
        print("digest must be 32 bytes", file=sys.stderr)
        return 2

    sys.stdout.write(sign_hash(key, digest).to_hex())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
