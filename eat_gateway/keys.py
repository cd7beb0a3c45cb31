"""
EAT Key Infrastructure

Three-tier authority hierarchy for access-token issuers:

    root -> intermediate -> issuers

- root is fixed at construction and only ever rotates the intermediate key
- intermediate only ever activates / deactivates issuer keys
- issuers sign access tokens off-line

Compromising an issuer key allows forging tokens only until the intermediate
deactivates it; compromising the intermediate cannot touch root.

Every mutation is validated in full before any state changes, so a rejected
call leaves the hierarchy untouched.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from .errors import (
    EATError,
    eat_error,
    EAT_E_ALREADY_INITIALIZED,
    EAT_E_INVALID_IDENTITY,
    EAT_E_UNAUTHORIZED,
    MSG_MUST_BE_INTERMEDIATE,
    MSG_MUST_BE_ROOT,
)

logger = logging.getLogger("eat_gateway.keys")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

EVENT_INTERMEDIATE_ROTATED = "IntermediateRotated"
EVENT_ISSUER_ACTIVATED = "IssuerActivated"
EVENT_ISSUER_DEACTIVATED = "IssuerDeactivated"


def normalize_identity(value: Any) -> str:
    """Return the EIP-55 checksummed form of an address.

    Accepts hex strings (any case, 0x-prefixed) or 20 raw bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise eat_error(EAT_E_INVALID_IDENTITY, "identity must be 20 bytes", length=len(value))
        return to_checksum_address(bytes(value))
    if not isinstance(value, str) or not is_address(value):
        raise eat_error(EAT_E_INVALID_IDENTITY, f"not an address: {value!r}")
    return to_checksum_address(value)


def is_zero_identity(value: str) -> bool:
    return int(value, 16) == 0


@dataclass(frozen=True)
class KeyEvent:
    """Observation emitted for every effective hierarchy change."""
    seq: int
    name: str
    identity: str
    actor: str

    def to_dict(self) -> Dict[str, Any]:
        return {"seq": self.seq, "name": self.name, "identity": self.identity, "actor": self.actor}


KeyListener = Callable[[KeyEvent], None]


class KeyHierarchy:
    """Owned key state plus the rotation rules around it.

    Instances are independent: tests and multi-tenant hosts construct as
    many as they need. All reads and writes go through a re-entrant lock so a
    rotation is visible to every verification that starts after it returns.
    """

    def __init__(self, root: Optional[str] = None):
        self._lock = threading.RLock()
        self._root: Optional[str] = None
        self._intermediate: str = ZERO_ADDRESS
        # dict preserves insertion order; values unused
        self._issuers: Dict[str, None] = {}
        self._listeners: List[KeyListener] = []
        self.events: List[KeyEvent] = []
        if root is not None:
            self.initialize(root)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, root: str) -> None:
        key = normalize_identity(root)
        if is_zero_identity(key):
            raise eat_error(EAT_E_INVALID_IDENTITY, "root key cannot be the zero address")
        with self._lock:
            if self._root is not None:
                raise eat_error(EAT_E_ALREADY_INITIALIZED, "key hierarchy already initialized")
            self._root = key
        logger.info("key hierarchy initialized root=%s", key)

    @property
    def initialized(self) -> bool:
        return self._root is not None

    def subscribe(self, listener: KeyListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate_intermediate(self, caller: str, new_intermediate: str) -> None:
        """Replace the intermediate key. Only root may do this."""
        actor = normalize_identity(caller)
        new_key = normalize_identity(new_intermediate)
        with self._lock:
            if self._root is None or actor != self._root:
                logger.warning("rotate_intermediate rejected actor=%s", actor)
                raise eat_error(EAT_E_UNAUTHORIZED, MSG_MUST_BE_ROOT)
            if is_zero_identity(new_key):
                raise eat_error(EAT_E_INVALID_IDENTITY, "intermediate key cannot be the zero address")
            self._intermediate = new_key
            self._emit(EVENT_INTERMEDIATE_ROTATED, new_key, actor)

    def activate_issuers(self, caller: str, identities: Iterable[str]) -> List[str]:
        """Add issuer keys; already-active keys are skipped without an event.

        Returns the identities that were actually added.
        """
        actor = normalize_identity(caller)
        keys = [normalize_identity(i) for i in identities]
        added: List[str] = []
        with self._lock:
            self._require_intermediate(actor)
            for key in keys:
                if key in self._issuers:
                    continue
                self._issuers[key] = None
                added.append(key)
                self._emit(EVENT_ISSUER_ACTIVATED, key, actor)
        return added

    def deactivate_issuers(self, caller: str, identities: Iterable[str]) -> List[str]:
        """Remove issuer keys; inactive keys are skipped without an event."""
        actor = normalize_identity(caller)
        keys = [normalize_identity(i) for i in identities]
        removed: List[str] = []
        with self._lock:
            self._require_intermediate(actor)
            for key in keys:
                if key not in self._issuers:
                    continue
                del self._issuers[key]
                removed.append(key)
                self._emit(EVENT_ISSUER_DEACTIVATED, key, actor)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_active_issuer(self, identity: Any) -> bool:
        try:
            key = normalize_identity(identity)
        except EATError:
            return False
        with self._lock:
            return key in self._issuers

    def get_active_issuers(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._issuers)

    def get_root_key(self) -> str:
        with self._lock:
            return self._root or ZERO_ADDRESS

    def get_intermediate_key(self) -> str:
        with self._lock:
            return self._intermediate

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "root": self.get_root_key(),
                "intermediate": self._intermediate,
                "issuers": list(self._issuers),
            }

    # ------------------------------------------------------------------

    def _require_intermediate(self, actor: str) -> None:
        if is_zero_identity(self._intermediate) or actor != self._intermediate:
            logger.warning("issuer change rejected actor=%s", actor)
            raise eat_error(EAT_E_UNAUTHORIZED, MSG_MUST_BE_INTERMEDIATE)

    def _emit(self, name: str, identity: str, actor: str) -> None:
        event = KeyEvent(seq=len(self.events) + 1, name=name, identity=identity, actor=actor)
        self.events.append(event)
        logger.info("%s identity=%s actor=%s", name, identity, actor)
        for listener in list(self._listeners):
            listener(event)
