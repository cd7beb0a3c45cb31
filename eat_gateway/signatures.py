"""
EAT Signature Verification

Recoverable ECDSA over secp256k1, Ethereum flavour:

- v must be 27 or 28
- s must lie in the lower half of the curve order (no malleable twins)
- r and s must be non-zero and below the curve order
- recovery must yield a non-zero address

`recover_signer` never compares against an expected signer; it returns
whichever address the math produces. Deciding whether that address may sign
is the orchestrator's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple, Union

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import decode_hex, encode_hex

from .errors import (
    eat_error,
    EAT_E_BAD_REQUEST,
    EAT_E_INVALID_SIGNATURE,
    EAT_E_INVALID_SIGNATURE_S,
    EAT_E_INVALID_SIGNATURE_V,
)
from .keys import ZERO_ADDRESS

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2
VALID_V = (27, 28)


def _scalar_bytes(value: Any, name: str) -> bytes:
    if isinstance(value, bool):
        raise eat_error(EAT_E_BAD_REQUEST, f"{name} must be a 32-byte value")
    if isinstance(value, int):
        if not 0 <= value < 2**256:
            raise eat_error(EAT_E_BAD_REQUEST, f"{name} out of range")
        return value.to_bytes(32, "big")
    if isinstance(value, str):
        try:
            value = decode_hex(value)
        except ValueError as e:
            raise eat_error(EAT_E_BAD_REQUEST, f"{name} is not valid hex") from e
    if isinstance(value, (bytes, bytearray)):
        if len(value) > 32:
            raise eat_error(EAT_E_BAD_REQUEST, f"{name} longer than 32 bytes")
        return bytes(value).rjust(32, b"\x00")
    raise eat_error(EAT_E_BAD_REQUEST, f"{name} must be int, bytes or hex")


@dataclass(frozen=True)
class Signature:
    """(v, r, s) as carried next to a token."""
    v: int
    r: bytes
    s: bytes

    def __post_init__(self):
        if isinstance(self.v, bool) or not isinstance(self.v, int):
            raise eat_error(EAT_E_BAD_REQUEST, "v must be an integer")
        object.__setattr__(self, "r", _scalar_bytes(self.r, "r"))
        object.__setattr__(self, "s", _scalar_bytes(self.s, "s"))

    @property
    def r_int(self) -> int:
        return int.from_bytes(self.r, "big")

    @property
    def s_int(self) -> int:
        return int.from_bytes(self.s, "big")

    @property
    def vrs(self) -> Tuple[int, bytes, bytes]:
        return self.v, self.r, self.s

    def to_bytes(self) -> bytes:
        """65-byte r || s || v encoding."""
        return self.r + self.s + bytes([self.v & 0xFF])

    def to_hex(self) -> str:
        return encode_hex(self.to_bytes())

    def to_dict(self) -> dict:
        return {"v": self.v, "r": encode_hex(self.r), "s": encode_hex(self.s)}

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Signature":
        if len(raw) != 65:
            raise eat_error(EAT_E_INVALID_SIGNATURE, "signature must be 65 bytes", length=len(raw))
        return cls(v=raw[64], r=raw[:32], s=raw[32:64])

    @classmethod
    def from_hex(cls, text: str) -> "Signature":
        try:
            raw = decode_hex(text)
        except ValueError as e:
            raise eat_error(EAT_E_INVALID_SIGNATURE, "signature is not valid hex") from e
        return cls.from_bytes(raw)

    @classmethod
    def from_dict(cls, data: dict) -> "Signature":
        try:
            return cls(v=int(data["v"]), r=data["r"], s=data["s"])
        except KeyError as e:
            raise eat_error(EAT_E_BAD_REQUEST, f"signature missing field {e.args[0]}") from e


SignatureLike = Union[Signature, bytes, str]


def coerce_signature(value: SignatureLike) -> Signature:
    if isinstance(value, Signature):
        return value
    if isinstance(value, (bytes, bytearray)):
        return Signature.from_bytes(bytes(value))
    if isinstance(value, str):
        return Signature.from_hex(value)
    raise eat_error(EAT_E_BAD_REQUEST, f"unsupported signature type: {type(value).__name__}")


def validate_components(signature: Signature) -> None:
    """Reject malformed (v, r, s) before any recovery is attempted."""
    if signature.v not in VALID_V:
        raise eat_error(EAT_E_INVALID_SIGNATURE_V, "invalid signature 'v' value", v=signature.v)
    s = signature.s_int
    if s > SECP256K1_HALF_N:
        raise eat_error(EAT_E_INVALID_SIGNATURE_S, "invalid signature 's' value")
    r = signature.r_int
    if r == 0 or r >= SECP256K1_N or s == 0:
        raise eat_error(EAT_E_INVALID_SIGNATURE, "invalid signature")


def recover_signer(message_hash: bytes, signature: Signature) -> str:
    """Recover the checksummed address that produced `signature` over `message_hash`."""
    if len(message_hash) != 32:
        raise eat_error(EAT_E_BAD_REQUEST, "message hash must be 32 bytes")
    validate_components(signature)
    try:
        sig = keys.Signature(vrs=(signature.v - 27, signature.r_int, signature.s_int))
        public_key = sig.recover_public_key_from_msg_hash(bytes(message_hash))
    except (BadSignature, ValidationError) as e:
        raise eat_error(EAT_E_INVALID_SIGNATURE, "invalid signature") from e
    signer = public_key.to_checksum_address()
    if signer == ZERO_ADDRESS:
        raise eat_error(EAT_E_INVALID_SIGNATURE, "invalid signature")
    return signer


def coerce_private_key(private_key: Any) -> keys.PrivateKey:
    if isinstance(private_key, keys.PrivateKey):
        return private_key
    try:
        if isinstance(private_key, str):
            private_key = decode_hex(private_key)
        return keys.PrivateKey(bytes(private_key))
    except (ValidationError, TypeError, ValueError) as e:
        raise eat_error(EAT_E_BAD_REQUEST, "invalid private key") from e


def sign_hash(private_key: Any, message_hash: bytes) -> Signature:
    """Sign a 32-byte digest; the result always passes `validate_components`."""
    pk = coerce_private_key(private_key)
    raw = pk.sign_msg_hash(bytes(message_hash))
    v, r, s = raw.v, raw.r, raw.s
    if s > SECP256K1_HALF_N:
        s = SECP256K1_N - s
        v ^= 1
    return Signature(v=v + 27, r=r, s=s)


def address_of(private_key: Any) -> str:
    return coerce_private_key(private_key).public_key.to_checksum_address()
