#!/usr/bin/env python3
"""
Ethereum Access Token - Command Line Interface

Usage:
    eat keygen                          Generate an issuer key pair
    eat selector <signature>            Print the 4-byte selector of a function signature
    eat sign --function SIG ...         Issue and sign a token (key from EAT_PRIVATE_KEY / EAT_SIGNER_*)
    eat hash <token.json> ...           Print the EIP-712 digest of a token
    eat verify <issued.json> ...        Check signature, expiry and signer of an issued token (off-line)
    eat serve                           Run the verifier HTTP API

Domain options (--chain-id, --verifier) default to EAT_CHAIN_ID and
EAT_VERIFYING_CONTRACT.
"""

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, List, Optional, Tuple

from eth_utils import decode_hex, encode_hex

from eat_gateway.codec import Domain, function_selector, hash_token
from eat_gateway.errors import EATError
from eat_gateway.issuer import IssuedToken, TokenIssuer
from eat_gateway.signatures import recover_signer
from eat_gateway.signing import LocalKeySigner, build_signer_from_env
from eat_gateway.tokens import AccessToken

logger = logging.getLogger("eat_cli")


def setup_logging(verbose: bool = False):
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )


def load_json(path: Path) -> dict:
    """Load a JSON document, raising a readable error on bad input."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"INPUT_ERROR: Invalid JSON in '{path}': {e}") from e
    except OSError as e:
        raise ValueError(f"INPUT_ERROR: Failed to read '{path}': {e}") from e


def parse_typed_arg(text: str) -> Tuple[str, Any]:
    """Parse TYPE:VALUE into an ABI type and a Python value.

    uint*/int* -> int (decimal or 0x hex), bool -> true/false,
    bytes* -> hex bytes, anything else (address, string) -> str.
    """
    if ":" not in text:
        raise ValueError(f"argument must be TYPE:VALUE, got {text!r}")
    kind, raw = text.split(":", 1)
    kind = kind.strip()
    if kind.startswith(("uint", "int")):
        return kind, int(raw, 0)
    if kind == "bool":
        return kind, raw.strip().lower() in ("1", "true", "yes")
    if kind.startswith("bytes"):
        return kind, decode_hex(raw)
    return kind, raw


def domain_from_args(args) -> Domain:
    verifier = args.verifier or os.getenv("EAT_VERIFYING_CONTRACT", "")
    if not verifier:
        raise ValueError("--verifier (or EAT_VERIFYING_CONTRACT) is required")
    chain_id = args.chain_id if args.chain_id is not None else int(os.getenv("EAT_CHAIN_ID", "1"), 0)
    return Domain(chain_id=chain_id, verifying_contract=verifier)


def cmd_keygen(args):
    signer = LocalKeySigner.generate()
    print(json.dumps({"address": signer.address, "private_key": signer.private_key_hex}, indent=2))
    return 0


def cmd_selector(args):
    print(encode_hex(function_selector(args.signature)))
    return 0


def cmd_sign(args):
    signer = build_signer_from_env()
    if signer is None:
        print("No signing key configured (set EAT_PRIVATE_KEY or EAT_SIGNER_MODE=external)", file=sys.stderr)
        return 2
    typed = [parse_typed_arg(a) for a in (args.arg or [])]
    issuer = TokenIssuer(domain_from_args(args), signer, default_ttl_seconds=args.ttl)
    issued = issuer.issue_for_call(
        args.function,
        target=args.target,
        caller=args.caller,
        arg_types=[t for t, _ in typed],
        args=[v for _, v in typed],
        expiry=args.expiry,
    )
    print(json.dumps(issued.to_dict(), indent=2))
    return 0


def cmd_hash(args):
    data = load_json(Path(args.token))
    token = AccessToken.from_dict(data.get("token", data))
    print(encode_hex(hash_token(domain_from_args(args).separator(), token)))
    return 0


def cmd_verify(args):
    issued = IssuedToken.from_dict(load_json(Path(args.issued)))
    domain = domain_from_args(args)
    now = int(time.time()) if args.now is None else args.now
    trusted: List[str] = args.issuer or []

    signer = recover_signer(hash_token(domain.separator(), issued.token), issued.signature)
    logger.debug("recovered signer=%s trusted=%d", signer, len(trusted))
    expired = issued.token.is_expired(now)
    if not trusted:
        logger.warning("no --issuer given; no signer is trusted")
    trusted_signer = signer.lower() in {t.lower() for t in trusted}
    result = {
        "signer": signer,
        "expired": expired,
        "trusted_signer": trusted_signer,
        "valid": (not expired) and trusted_signer,
    }
    print(json.dumps(result, indent=2))
    return 0 if result["valid"] else 1


def cmd_serve(args):
    from eat_gateway.server import main as serve_main

    serve_main(["--host", args.host, "--port", str(args.port)])
    return 0


def _add_domain_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--chain-id", type=lambda s: int(s, 0), default=None, help="EIP-712 chain id")
    p.add_argument("--verifier", default=None, help="verifying contract / verifier address")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="eat", description="Ethereum Access Token tooling")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("keygen", help="Generate an issuer key pair")

    sel_parser = subparsers.add_parser("selector", help="Compute a function selector")
    sel_parser.add_argument("signature", help='e.g. "transfer(address,uint256)"')

    sign_parser = subparsers.add_parser("sign", help="Issue and sign an access token")
    _add_domain_args(sign_parser)
    sign_parser.add_argument("--function", required=True, help="function signature of the guarded call")
    sign_parser.add_argument("--target", required=True, help="address the call is made to")
    sign_parser.add_argument("--caller", required=True, help="address allowed to make the call")
    sign_parser.add_argument("--arg", action="append", help="call argument as TYPE:VALUE (repeatable)")
    sign_parser.add_argument("--ttl", type=int, default=60, help="seconds until expiry")
    sign_parser.add_argument("--expiry", type=int, default=None, help="absolute expiry (overrides --ttl)")

    hash_parser = subparsers.add_parser("hash", help="Print the EIP-712 digest of a token")
    _add_domain_args(hash_parser)
    hash_parser.add_argument("token", help="token JSON (bare token or issued token)")

    verify_parser = subparsers.add_parser("verify", help="Off-line check of an issued token")
    _add_domain_args(verify_parser)
    verify_parser.add_argument("issued", help="issued token JSON ({token, signature})")
    verify_parser.add_argument("--issuer", action="append", help="trusted issuer address (repeatable); without it nothing verifies")
    verify_parser.add_argument("--now", type=int, default=None, help="override current time (seconds)")

    serve_parser = subparsers.add_parser("serve", help="Run the verifier HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {
        "keygen": cmd_keygen,
        "selector": cmd_selector,
        "sign": cmd_sign,
        "hash": cmd_hash,
        "verify": cmd_verify,
        "serve": cmd_serve,
    }
    if args.command not in commands:
        parser.print_help()
        return 1
    try:
        return commands[args.command](args)
    except EATError as e:
        print(json.dumps({"error": e.as_dict()}, indent=2), file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
