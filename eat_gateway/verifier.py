"""
EAT Access Token Verifier

Orchestrates one verification attempt:

    Unverified -> SignatureChecked -> ExpiryChecked -> MembershipChecked
               -> ReplayChecked -> Consumed

1. (v, r, s) well-formed          else EAT_E_INVALID_SIGNATURE_V / _S / EAT_E_INVALID_SIGNATURE
2. expiry >= now                  else EAT_E_EXPIRED
3. recovered signer is an active
   issuer for the digest of the
   caller-supplied fields         else EAT_E_VERIFICATION_FAILURE
4. fingerprint not yet consumed   else EAT_E_ALREADY_USED
5. fingerprint marked consumed (irreversible)

Step 3 is generic: a wrong signer, an inactive issuer and any
field-level mismatch (target, caller, selector, parameters, expiry) all look
the same to the caller.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from eth_abi import encode
from eth_utils import keccak

from .codec import Domain, hash_token
from .errors import (
    EATError,
    eat_error,
    EAT_E_ALREADY_USED,
    EAT_E_EXPIRED,
    EAT_E_VERIFICATION_FAILURE,
    MSG_ALREADY_USED,
    MSG_EXPIRED,
    MSG_VERIFICATION_FAILURE,
)
from .keys import KeyEvent, KeyHierarchy
from .metrics import record_key_event, record_replay_reject, record_verification
from .replay import InMemoryReplayGuard, ReplayGuard
from .signatures import Signature, recover_signer, validate_components
from .tokens import AccessToken

logger = logging.getLogger("eat_gateway.verifier")


def _now_seconds() -> int:
    return int(time.time())


class AccessTokenVerifier:
    """Verifies and consumes access tokens for one verifying identity.

    The verifier owns its key hierarchy and replay guard; neither is global.
    `clock` returns the current time in the same unit as token expiry
    (seconds since epoch by default).
    """

    def __init__(
        self,
        domain: Domain,
        keys: KeyHierarchy,
        replay_guard: Optional[ReplayGuard] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.domain = domain
        self.keys = keys
        self.replay_guard = replay_guard if replay_guard is not None else InMemoryReplayGuard()
        self._clock = clock or _now_seconds
        self.domain_separator = domain.separator()
        keys.subscribe(self._on_key_event)

    @classmethod
    def create(
        cls,
        root: str,
        *,
        chain_id: int,
        address: str,
        replay_guard: Optional[ReplayGuard] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> "AccessTokenVerifier":
        """Build a verifier with a fresh hierarchy rooted at `root`."""
        domain = Domain(chain_id=chain_id, verifying_contract=address)
        return cls(domain, KeyHierarchy(root), replay_guard=replay_guard, clock=clock)

    @property
    def address(self) -> str:
        return self.domain.verifying_contract

    def now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def digest(self, token: AccessToken) -> bytes:
        return hash_token(self.domain_separator, token)

    def fingerprint(self, token: AccessToken, signature: Signature) -> bytes:
        """Replay-guard key: keccak256(abi.encode(r, s, digest))."""
        return keccak(
            encode(["bytes32", "bytes32", "bytes32"], [signature.r, signature.s, self.digest(token)])
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_signer_of(self, token: AccessToken, v: int, r: Any, s: Any) -> str:
        """Recovered signer only: no hierarchy, expiry or replay checks."""
        return recover_signer(self.digest(token), Signature(v=v, r=r, s=s))

    def verify(self, token: AccessToken, v: int, r: Any, s: Any) -> bool:
        """Dry run of steps 1-3. Never touches the replay guard.

        Malformed signatures and expired tokens raise; a signer that is not an
        active issuer for these exact fields returns False.
        """
        signature = Signature(v=v, r=r, s=s)
        try:
            ok = self._check(token, signature)
        except EATError as e:
            record_verification("verify", e.code)
            raise
        record_verification("verify", "ok" if ok else EAT_E_VERIFICATION_FAILURE)
        return ok

    def verify_and_consume(self, token: AccessToken, v: int, r: Any, s: Any) -> bool:
        """All five steps. Returns True or raises; success consumes the token."""
        signature = Signature(v=v, r=r, s=s)
        try:
            fp = self._authorize(token, signature)
            if not self.replay_guard.mark_used(fp):
                record_replay_reject()
                raise eat_error(EAT_E_ALREADY_USED, MSG_ALREADY_USED)
        except EATError as e:
            record_verification("consume", e.code)
            logger.info("token rejected code=%s expiry=%s", e.code, token.expiry)
            raise
        record_verification("consume", "ok")
        logger.debug("token consumed fingerprint=%s", fp.hex())
        return True

    @contextmanager
    def consuming(self, token: AccessToken, v: int, r: Any, s: Any) -> Iterator[bytes]:
        """Consume a token around a guarded body.

        The fingerprint is reserved before the body runs and committed only if
        the body returns normally; if it raises, the reservation is released
        and the token stays usable. Concurrent attempts with the same token
        see EAT_E_ALREADY_USED while the reservation is held.
        """
        signature = Signature(v=v, r=r, s=s)
        try:
            fp = self._authorize(token, signature)
            if not self.replay_guard.reserve(fp):
                record_replay_reject()
                raise eat_error(EAT_E_ALREADY_USED, MSG_ALREADY_USED)
        except EATError as e:
            record_verification("consume", e.code)
            logger.info("token rejected code=%s expiry=%s", e.code, token.expiry)
            raise
        try:
            yield fp
        except BaseException:
            self.replay_guard.release(fp)
            record_verification("consume", "aborted")
            raise
        self.replay_guard.commit(fp)
        record_verification("consume", "ok")

    def is_consumed(self, token: AccessToken, v: int, r: Any, s: Any) -> bool:
        return self.replay_guard.is_used(self.fingerprint(token, Signature(v=v, r=r, s=s)))

    def _check(self, token: AccessToken, signature: Signature) -> bool:
        validate_components(signature)
        if token.expiry < self.now():
            raise eat_error(EAT_E_EXPIRED, MSG_EXPIRED, expiry=token.expiry)
        signer = recover_signer(self.digest(token), signature)
        return self.keys.is_active_issuer(signer)

    def _authorize(self, token: AccessToken, signature: Signature) -> bytes:
        if not self._check(token, signature):
            raise eat_error(EAT_E_VERIFICATION_FAILURE, MSG_VERIFICATION_FAILURE)
        return self.fingerprint(token, signature)

    # ------------------------------------------------------------------
    # Key infrastructure (delegated)
    # ------------------------------------------------------------------

    def rotate_intermediate(self, caller: str, new_intermediate: str) -> None:
        self.keys.rotate_intermediate(caller, new_intermediate)

    def activate_issuers(self, caller: str, identities: Iterable[str]) -> List[str]:
        return self.keys.activate_issuers(caller, identities)

    def deactivate_issuers(self, caller: str, identities: Iterable[str]) -> List[str]:
        return self.keys.deactivate_issuers(caller, identities)

    def is_active_issuer(self, identity: str) -> bool:
        return self.keys.is_active_issuer(identity)

    def get_active_issuers(self) -> Tuple[str, ...]:
        return self.keys.get_active_issuers()

    def get_root_key(self) -> str:
        return self.keys.get_root_key()

    def get_intermediate_key(self) -> str:
        return self.keys.get_intermediate_key()

    @staticmethod
    def _on_key_event(event: KeyEvent) -> None:
        record_key_event(event.name)
