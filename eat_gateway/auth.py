"""Caller authentication helpers for the EAT HTTP surface.

Administrative calls (key rotation) and token-gated routes need a caller
identity the client cannot choose. This maps API keys to addresses; the
address is then the "proof of identity" checked against root /
intermediate, or bound into the token as its caller.

Env vars:
  - EAT_API_KEYS_JSON: JSON dict mapping api_key -> address
  - EAT_API_KEYS_FILE: path to a JSON file with the same mapping
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import EATError
from .keys import normalize_identity

ENV_API_KEYS_JSON = "EAT_API_KEYS_JSON"
ENV_API_KEYS_FILE = "EAT_API_KEYS_FILE"

logger = logging.getLogger("eat_gateway.auth")


@dataclass(frozen=True)
class ApiKeyAuth:
    """API key -> caller address mapping."""

    api_key_to_address: Dict[str, str]
    config_error: Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping: Dict[str, str]) -> "ApiKeyAuth":
        return cls(api_key_to_address={str(k): normalize_identity(v) for k, v in mapping.items()})

    @classmethod
    def load_from_env(cls) -> "ApiKeyAuth":
        """Load API key mapping from env/file.

        Security note: if configuration is *present* but malformed, we return an
        instance with config_error set so callers fail closed.
        """
        raw_json = os.getenv(ENV_API_KEYS_JSON)
        file_path = os.getenv(ENV_API_KEYS_FILE)
        if not raw_json and not file_path:
            return cls(api_key_to_address={})

        try:
            if raw_json:
                data = json.loads(raw_json)
            else:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("API key mapping must be a JSON object")
            return cls.from_mapping(data)
        except (OSError, ValueError, EATError) as e:
            logger.error("invalid API key configuration: %s", e)
            return cls(api_key_to_address={}, config_error="API_KEY_CONFIG_INVALID")

    def resolve_identity(self, api_key: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Resolve caller address.

        Returns (address, error). If error is not None, the request should be
        rejected.
        """
        if self.config_error:
            return None, self.config_error
        if not api_key:
            return None, "API_KEY_REQUIRED"
        address = self.api_key_to_address.get(api_key)
        if not address:
            return None, "API_KEY_INVALID"
        return address, None
