"""
Off-line issuance of access tokens.

An issuer builds the token for one specific call (selector, target, caller,
ABI-encoded arguments), stamps an expiry, and signs the EIP-712 digest for the
verifier's domain. The result travels with the call as (token, v, r, s).

SECURITY: the issuer holds a signing key. In production, use an
ExternalCommandSigner backed by an HSM or wallet daemon.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from .codec import Domain, function_selector, hash_token, pack_parameters
from .signatures import Signature
from .signing import Signer, coerce_signer
from .tokens import AccessToken, FunctionCall

logger = logging.getLogger("eat_gateway.issuer")


@dataclass(frozen=True)
class IssuedToken:
    """A token plus the signature that authorizes it (the wire artifact)."""
    token: AccessToken
    signature: Signature

    @property
    def vrs(self):
        return self.signature.vrs

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token.to_dict(), "signature": self.signature.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuedToken":
        return cls(
            token=AccessToken.from_dict(data.get("token") or {}),
            signature=Signature.from_dict(data.get("signature") or {}),
        )


class TokenIssuer:
    """Issues access tokens for one verifier domain."""

    def __init__(
        self,
        domain: Domain,
        signer: Any,
        *,
        default_ttl_seconds: int = 60,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.domain = domain
        self.signer: Signer = coerce_signer(signer)
        self.default_ttl_seconds = int(default_ttl_seconds)
        self._clock = clock or (lambda: int(time.time()))
        self._separator = domain.separator()

    @property
    def address(self) -> str:
        return self.signer.address

    def sign(self, token: AccessToken) -> Signature:
        return self.signer.sign_hash(hash_token(self._separator, token))

    def issue(
        self,
        *,
        function_signature: Any,
        target: str,
        caller: str,
        parameters: Any = b"",
        ttl_seconds: Optional[int] = None,
        expiry: Optional[int] = None,
    ) -> IssuedToken:
        """Build and sign a token.

        `expiry` wins over `ttl_seconds`; otherwise expiry is now + ttl (or the
        issuer default).
        """
        if expiry is None:
            ttl = self.default_ttl_seconds if ttl_seconds is None else int(ttl_seconds)
            expiry = int(self._clock()) + ttl
        token = AccessToken(
            expiry=int(expiry),
            function_call=FunctionCall(
                function_signature=function_signature,
                target=target,
                caller=caller,
                parameters=parameters,
            ),
        )
        signature = self.sign(token)
        logger.info(
            "issued token issuer=%s target=%s caller=%s expiry=%s",
            self.address, token.function_call.target, token.function_call.caller, token.expiry,
        )
        return IssuedToken(token=token, signature=signature)

    def issue_for_call(
        self,
        signature_text: str,
        *,
        target: str,
        caller: str,
        arg_types: Sequence[str] = (),
        args: Sequence[Any] = (),
        ttl_seconds: Optional[int] = None,
        expiry: Optional[int] = None,
    ) -> IssuedToken:
        """Issue for a named function, e.g. "transfer(address,uint256)"."""
        return self.issue(
            function_signature=function_selector(signature_text),
            target=target,
            caller=caller,
            parameters=pack_parameters(arg_types, args),
            ttl_seconds=ttl_seconds,
            expiry=expiry,
        )
