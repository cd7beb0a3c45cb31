"""EAT Gateway package.

Ethereum Access Tokens: short-lived, function-call-scoped capability tokens
signed off-line by an issuer and verified before a guarded operation runs.

- Three-tier key hierarchy (root -> intermediate -> issuers)
- EIP-712 token hashing with secp256k1 signer recovery
- Single-use consumption (replay guard) and exact call binding

Convenience imports
------------------
The package avoids heavy import-time side effects. These are available as
top-level imports and are loaded lazily:

    from eat_gateway import AccessTokenVerifier, KeyHierarchy, AccessToken
    from eat_gateway import TokenIssuer, AccessTokenConsumer, token_gated
    from eat_gateway import create_app
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments.

    The project version is a simple `version = "..."` field in
    `pyproject.toml`, so a regex parse is enough.
    """

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
    except OSError:
        return None
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    return m.group(1) if m else None


__version__ = _read_version_from_pyproject() or "0.3.0"

__all__ = [
    "__version__",
    "AccessToken",
    "FunctionCall",
    "Domain",
    "Signature",
    "KeyHierarchy",
    "AccessTokenVerifier",
    "InMemoryReplayGuard",
    "SQLiteReplayGuard",
    "TokenIssuer",
    "LocalKeySigner",
    "AccessTokenConsumer",
    "CallContext",
    "token_gated",
    "EATError",
    "create_app",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "AccessToken": ("eat_gateway.tokens", "AccessToken"),
    "FunctionCall": ("eat_gateway.tokens", "FunctionCall"),
    "Domain": ("eat_gateway.codec", "Domain"),
    "Signature": ("eat_gateway.signatures", "Signature"),
    "KeyHierarchy": ("eat_gateway.keys", "KeyHierarchy"),
    "AccessTokenVerifier": ("eat_gateway.verifier", "AccessTokenVerifier"),
    "InMemoryReplayGuard": ("eat_gateway.replay", "InMemoryReplayGuard"),
    "SQLiteReplayGuard": ("eat_gateway.replay", "SQLiteReplayGuard"),
    "TokenIssuer": ("eat_gateway.issuer", "TokenIssuer"),
    "LocalKeySigner": ("eat_gateway.signing", "LocalKeySigner"),
    "AccessTokenConsumer": ("eat_gateway.consumer", "AccessTokenConsumer"),
    "CallContext": ("eat_gateway.consumer", "CallContext"),
    "token_gated": ("eat_gateway.consumer", "token_gated"),
    "EATError": ("eat_gateway.errors", "EATError"),
    "create_app": ("eat_gateway.server", "create_app"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        # Cache the resolved attribute on the module for faster future access.
        globals()[name] = value
        return value
    raise AttributeError(f"module 'eat_gateway' has no attribute {name!r}")


def __dir__() -> list[str]:
    # Include lazy exports for IDE/autocomplete.
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
