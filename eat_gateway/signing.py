"""
eat_gateway.signing: signing backends for access-token issuers.

Issuers sign off-line; this module gives them a small interface so the same
issuance code works with different key custody:

- LocalKeySigner: in-process secp256k1 key (dev/testing, scripts).
- ExternalCommandSigner: delegates to an external command, enabling
  non-exportable keys (HSM/enclave/wallet daemon).

Contract for ExternalCommandSigner:
- stdin: 0x-hex of the 32-byte digest (may include trailing newline)
- stdout: 0x-hex of the 65-byte signature r || s || v

All modes are fail-closed: any signer error prevents issuance, and an
external signature that does not recover to the configured address is
rejected.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_keys import keys
from eth_utils import encode_hex

from .errors import EATError, eat_error, EAT_E_CONFIG
from .keys import normalize_identity
from .signatures import Signature, coerce_private_key, recover_signer, sign_hash


@runtime_checkable
class Signer(Protocol):
    """Protocol implemented by signing backends."""
    address: str

    def sign_hash(self, digest: bytes) -> Signature: ...


@dataclass
class LocalKeySigner:
    """Signer holding a secp256k1 private key in-process."""
    private_key: keys.PrivateKey

    def __post_init__(self):
        self.private_key = coerce_private_key(self.private_key)

    @classmethod
    def generate(cls) -> "LocalKeySigner":
        return cls(Account.create().key)

    @property
    def address(self) -> str:
        return self.private_key.public_key.to_checksum_address()

    @property
    def private_key_hex(self) -> str:
        return encode_hex(self.private_key.to_bytes())

    def sign_hash(self, digest: bytes) -> Signature:
        return sign_hash(self.private_key, digest)

    def __repr__(self) -> str:
        # never print key material
        return f"LocalKeySigner(address={self.address})"


def _run_external_signer_cmd(*, signing_cmd: str, digest: bytes, timeout_seconds: float) -> Signature:
    if not signing_cmd or not str(signing_cmd).strip():
        raise ValueError("External signer requires signing_cmd")
    try:
        proc = subprocess.run(
            shlex.split(str(signing_cmd)),
            input=(encode_hex(bytes(digest)) + "\n").encode("utf-8"),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=float(timeout_seconds),
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"External signer timed out after {timeout_seconds}s") from e
    except OSError as e:
        raise RuntimeError(f"External signer failed to execute: {e}") from e

    if proc.returncode != 0:
        err = (proc.stderr or b"").decode("utf-8", errors="ignore").strip()
        raise RuntimeError(f"External signer returned code {proc.returncode}: {err}")

    out = (proc.stdout or b"").decode("utf-8", errors="ignore").strip()
    try:
        return Signature.from_hex(out)
    except EATError as e:
        raise RuntimeError("External signer output was not a 65-byte hex signature") from e


@dataclass
class ExternalCommandSigner:
    """Signer that delegates to an external signing command.

    This is a "hard-key seam": private keys can live outside the Python process.
    """
    address: str
    signing_cmd: str
    timeout_seconds: float = 2.0

    def __post_init__(self):
        self.address = normalize_identity(self.address)

    def sign_hash(self, digest: bytes) -> Signature:
        signature = _run_external_signer_cmd(
            signing_cmd=self.signing_cmd,
            digest=bytes(digest),
            timeout_seconds=self.timeout_seconds,
        )
        if recover_signer(bytes(digest), signature) != self.address:
            raise RuntimeError("External signer produced a signature for a different address")
        return signature


def coerce_signer(obj: Any) -> Signer:
    """Coerce a supported object into a Signer."""
    if obj is None:
        raise TypeError("signer is None")
    if isinstance(obj, (LocalKeySigner, ExternalCommandSigner)):
        return obj
    if isinstance(obj, (keys.PrivateKey, bytes, bytearray, str)):
        return LocalKeySigner(obj)
    # Duck-typed
    if isinstance(obj, Signer):
        return obj
    raise TypeError(f"Unsupported signer type: {type(obj)}")


def build_signer_from_env(
    *,
    mode_env: str = "EAT_SIGNER_MODE",
    key_env: str = "EAT_PRIVATE_KEY",
    cmd_env: str = "EAT_SIGNER_CMD",
    address_env: str = "EAT_SIGNER_ADDRESS",
    timeout_env: str = "EAT_SIGNER_TIMEOUT_SECONDS",
) -> Optional[Signer]:
    """Build an issuer signer based on environment configuration.

    - EAT_SIGNER_MODE=file (default): LocalKeySigner from EAT_PRIVATE_KEY
      (returns None when unset).
    - EAT_SIGNER_MODE=external: ExternalCommandSigner running EAT_SIGNER_CMD
      and expecting signatures from EAT_SIGNER_ADDRESS.
    """
    mode = (os.getenv(mode_env, "") or "file").strip().lower()

    if mode in ("file", "inproc", "in-process", "software"):
        raw = (os.getenv(key_env, "") or "").strip()
        if not raw:
            return None
        try:
            return LocalKeySigner(raw)
        except EATError as e:
            raise eat_error(EAT_E_CONFIG, f"{key_env} is not a valid private key") from e

    if mode in ("external", "cmd", "command"):
        cmd = (os.getenv(cmd_env, "") or "").strip()
        if not cmd:
            raise eat_error(EAT_E_CONFIG, f"{cmd_env} must be set when {mode_env}=external")
        address = (os.getenv(address_env, "") or "").strip()
        if not address:
            raise eat_error(EAT_E_CONFIG, f"{address_env} must be set when {mode_env}=external")
        tout = (os.getenv(timeout_env, "") or "").strip()
        timeout = 2.0
        if tout:
            try:
                timeout = float(tout)
            except ValueError:
                raise eat_error(EAT_E_CONFIG, f"{timeout_env} must be a number (seconds)")
        return ExternalCommandSigner(address=address, signing_cmd=cmd, timeout_seconds=timeout)

    raise eat_error(EAT_E_CONFIG, f"Unsupported {mode_env}={mode!r}; expected file|external")
