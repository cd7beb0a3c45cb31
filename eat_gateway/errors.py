"""Stable error taxonomy for EAT.

This module defines machine-readable error codes and a single exception type
used across the key hierarchy, the verifier, the consumer adapter and the
HTTP surface.

Design goals:
- Stable `code` string suitable for programmatic handling.
- Optional `retryable` flag and `http_status` for transport layers.
- Structured `details` for debugging without parsing messages.

Authorization mismatches (wrong signer, inactive issuer, wrong target,
caller, selector or parameters) all share EAT_E_VERIFICATION_FAILURE so a
caller cannot learn which check failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Key hierarchy
EAT_E_ALREADY_INITIALIZED = "EAT_E_ALREADY_INITIALIZED"
EAT_E_UNAUTHORIZED = "EAT_E_UNAUTHORIZED"
EAT_E_INVALID_IDENTITY = "EAT_E_INVALID_IDENTITY"

# Signature components
EAT_E_INVALID_SIGNATURE_V = "EAT_E_INVALID_SIGNATURE_V"
EAT_E_INVALID_SIGNATURE_S = "EAT_E_INVALID_SIGNATURE_S"
EAT_E_INVALID_SIGNATURE = "EAT_E_INVALID_SIGNATURE"

# Token checks
EAT_E_EXPIRED = "EAT_E_EXPIRED"
EAT_E_VERIFICATION_FAILURE = "EAT_E_VERIFICATION_FAILURE"
EAT_E_ALREADY_USED = "EAT_E_ALREADY_USED"

# Generic
EAT_E_BAD_REQUEST = "EAT_E_BAD_REQUEST"
EAT_E_REPLAY_STORAGE = "EAT_E_REPLAY_STORAGE"
EAT_E_CONFIG = "EAT_E_CONFIG"


_DEFAULT_HTTP_STATUS: Dict[str, int] = {
    EAT_E_ALREADY_INITIALIZED: 409,
    EAT_E_UNAUTHORIZED: 403,
    EAT_E_INVALID_IDENTITY: 400,
    EAT_E_INVALID_SIGNATURE_V: 400,
    EAT_E_INVALID_SIGNATURE_S: 400,
    EAT_E_INVALID_SIGNATURE: 400,
    EAT_E_EXPIRED: 401,
    EAT_E_VERIFICATION_FAILURE: 401,
    EAT_E_ALREADY_USED: 409,
    EAT_E_BAD_REQUEST: 400,
    EAT_E_REPLAY_STORAGE: 503,
    EAT_E_CONFIG: 500,
}


@dataclass
class EATError(Exception):
    """Base EAT exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "http_status": int(self.http_status),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        # Keep message readable; details are available via .as_dict()
        return f"{self.code}: {self.message}"


def eat_error(
    code: str,
    message: str,
    *,
    retryable: bool = False,
    http_status: int | None = None,
    **details: Any,
) -> EATError:
    status = http_status if http_status is not None else _DEFAULT_HTTP_STATUS.get(code, 400)
    return EATError(code=code, message=message, retryable=retryable, http_status=status, details=details)


# Canonical messages for the token checks.
MSG_EXPIRED = "AccessToken: has expired"
MSG_VERIFICATION_FAILURE = "AccessToken: verification failure"
MSG_ALREADY_USED = "AccessToken: already used"
MSG_MUST_BE_ROOT = "unauthorised: must be root"
MSG_MUST_BE_INTERMEDIATE = "unauthorised: must be intermediate"
