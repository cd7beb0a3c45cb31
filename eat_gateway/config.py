"""Environment configuration for an EAT verifier.

Env:
- EAT_CHAIN_ID (default: 1)
- EAT_VERIFYING_CONTRACT: address of this verifier (required)
- EAT_ROOT_KEY: root key address (required)
- EAT_DOMAIN_NAME (default: "Ethereum Access Token")
- EAT_DOMAIN_VERSION (default: "1")
- EAT_REPLAY_DB_PATH: SQLite file for durable replay protection; in-memory
  when unset
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

from .codec import DOMAIN_NAME, DOMAIN_VERSION, Domain
from .errors import EATError, eat_error, EAT_E_CONFIG
from .keys import KeyHierarchy, normalize_identity
from .replay import InMemoryReplayGuard, ReplayGuard, SQLiteReplayGuard
from .verifier import AccessTokenVerifier

logger = logging.getLogger("eat_gateway.config")


@dataclass(frozen=True)
class VerifierConfig:
    verifying_contract: str
    root_key: str
    chain_id: int = 1
    domain_name: str = DOMAIN_NAME
    domain_version: str = DOMAIN_VERSION
    replay_db_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "VerifierConfig":
        contract = (os.getenv("EAT_VERIFYING_CONTRACT", "") or "").strip()
        root = (os.getenv("EAT_ROOT_KEY", "") or "").strip()
        if not contract:
            raise eat_error(EAT_E_CONFIG, "EAT_VERIFYING_CONTRACT must be set")
        if not root:
            raise eat_error(EAT_E_CONFIG, "EAT_ROOT_KEY must be set")
        try:
            contract = normalize_identity(contract)
            root = normalize_identity(root)
        except EATError as e:
            raise eat_error(EAT_E_CONFIG, f"invalid address in configuration: {e.message}") from e

        raw_chain = (os.getenv("EAT_CHAIN_ID", "") or "1").strip()
        try:
            chain_id = int(raw_chain, 0)
        except ValueError as e:
            raise eat_error(EAT_E_CONFIG, f"EAT_CHAIN_ID must be an integer, got {raw_chain!r}") from e

        return cls(
            verifying_contract=contract,
            root_key=root,
            chain_id=chain_id,
            domain_name=(os.getenv("EAT_DOMAIN_NAME", "") or DOMAIN_NAME),
            domain_version=(os.getenv("EAT_DOMAIN_VERSION", "") or DOMAIN_VERSION),
            replay_db_path=(os.getenv("EAT_REPLAY_DB_PATH", "") or "").strip() or None,
        )

    def domain(self) -> Domain:
        return Domain(
            chain_id=self.chain_id,
            verifying_contract=self.verifying_contract,
            name=self.domain_name,
            version=self.domain_version,
        )

    def replay_guard(self) -> ReplayGuard:
        if self.replay_db_path:
            return SQLiteReplayGuard(self.replay_db_path)
        logger.warning("EAT_REPLAY_DB_PATH not set; replay protection is process-local")
        return InMemoryReplayGuard()

    def build_verifier(self, clock: Optional[Callable[[], int]] = None) -> AccessTokenVerifier:
        return AccessTokenVerifier(
            self.domain(),
            KeyHierarchy(self.root_key),
            replay_guard=self.replay_guard(),
            clock=clock,
        )
