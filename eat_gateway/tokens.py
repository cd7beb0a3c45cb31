"""
EAT Access Tokens

Immutable values describing one authorized function call:

    AccessToken{expiry, functionCall: FunctionCall{functionSignature, target, caller, parameters}}

The token carries no signature; (v, r, s) travels next to it. The same values
are built by the issuer off-line and rebuilt independently by the verifier
from the ambient call context, so field equality is exact byte equality.

Wire form mirrors the typed-data message wallets sign (camelCase keys, 0x hex
bytes). `to_compact` / `from_compact` wrap it in url-safe base64.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, replace
from typing import Any, Dict

from eth_utils import decode_hex, encode_hex

from .errors import eat_error, EAT_E_BAD_REQUEST
from .keys import normalize_identity

SELECTOR_LENGTH = 4
UINT256_MAX = 2**256 - 1


def _as_bytes(value: Any, field_name: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return decode_hex(value)
        except ValueError as e:
            raise eat_error(EAT_E_BAD_REQUEST, f"{field_name} is not valid hex") from e
    raise eat_error(EAT_E_BAD_REQUEST, f"{field_name} must be bytes or a hex string")


@dataclass(frozen=True)
class FunctionCall:
    """The exact call a token authorizes."""
    function_signature: bytes  # 4-byte selector
    target: str  # address the call must be directed at
    caller: str  # address permitted to make the call
    parameters: bytes = b""  # ABI encoding of the call arguments

    def __post_init__(self):
        sig = _as_bytes(self.function_signature, "functionSignature")
        if len(sig) != SELECTOR_LENGTH:
            raise eat_error(EAT_E_BAD_REQUEST, "functionSignature must be 4 bytes", length=len(sig))
        object.__setattr__(self, "function_signature", sig)
        object.__setattr__(self, "target", normalize_identity(self.target))
        object.__setattr__(self, "caller", normalize_identity(self.caller))
        object.__setattr__(self, "parameters", _as_bytes(self.parameters, "parameters"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "functionSignature": encode_hex(self.function_signature),
            "target": self.target,
            "caller": self.caller,
            "parameters": encode_hex(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunctionCall":
        try:
            return cls(
                function_signature=data["functionSignature"],
                target=data["target"],
                caller=data["caller"],
                parameters=data.get("parameters", b""),
            )
        except KeyError as e:
            raise eat_error(EAT_E_BAD_REQUEST, f"functionCall missing field {e.args[0]}") from e


@dataclass(frozen=True)
class AccessToken:
    """A time-bound grant for exactly one FunctionCall."""
    expiry: int  # seconds since epoch; valid up to and including this instant
    function_call: FunctionCall

    def __post_init__(self):
        if isinstance(self.expiry, bool) or not isinstance(self.expiry, int):
            raise eat_error(EAT_E_BAD_REQUEST, "expiry must be an integer")
        if not 0 <= self.expiry <= UINT256_MAX:
            raise eat_error(EAT_E_BAD_REQUEST, "expiry out of uint256 range")

    def is_expired(self, now: int) -> bool:
        return self.expiry < now

    def with_changes(self, **changes: Any) -> "AccessToken":
        """Copy with token or function-call fields replaced (by snake_case name)."""
        fc_fields = {k: changes.pop(k) for k in list(changes) if k in FunctionCall.__dataclass_fields__}
        fc = replace(self.function_call, **fc_fields) if fc_fields else self.function_call
        return replace(self, function_call=fc, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expiry": self.expiry,
            "functionCall": self.function_call.to_dict(),
        }

    def to_compact(self) -> str:
        """Serialize to compact string format."""
        return base64.urlsafe_b64encode(
            json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")
        ).decode("ascii")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessToken":
        if not isinstance(data, dict):
            raise eat_error(EAT_E_BAD_REQUEST, "token must be a JSON object")
        try:
            expiry = data["expiry"]
            fc = data["functionCall"]
        except KeyError as e:
            raise eat_error(EAT_E_BAD_REQUEST, f"token missing field {e.args[0]}") from e
        if isinstance(expiry, str):
            try:
                expiry = int(expiry, 0)
            except ValueError as e:
                raise eat_error(EAT_E_BAD_REQUEST, "expiry must be an integer") from e
        if not isinstance(fc, dict):
            raise eat_error(EAT_E_BAD_REQUEST, "functionCall must be a JSON object")
        return cls(expiry=expiry, function_call=FunctionCall.from_dict(fc))

    @classmethod
    def from_compact(cls, compact: str) -> "AccessToken":
        """Deserialize from compact string format."""
        try:
            data = json.loads(base64.urlsafe_b64decode(compact))
        except (ValueError, TypeError) as e:
            raise eat_error(EAT_E_BAD_REQUEST, "malformed compact token") from e
        return cls.from_dict(data)


__all__ = ["FunctionCall", "AccessToken", "SELECTOR_LENGTH"]
