"""
EAT Token Codec

EIP-712 structured-data hashing for access tokens. The digest a verifier
recomputes must be byte-identical to the digest a wallet signs via
`eth_signTypedData_v4`, so everything here follows EIP-712 exactly:

    digest = keccak256(0x19 0x01 || domainSeparator || hashStruct(AccessToken))

The domain binds the verifying entity's own address and chain id, so a token
accepted by one verifier instance is rejected by any other.

Call parameters are hashed as an opaque byte blob. `pack_parameters` and
`encode_parameters` are the canonical way to produce that blob from typed
arguments; nothing here ever interprets it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_utils import keccak

from .errors import eat_error, EAT_E_BAD_REQUEST
from .keys import normalize_identity
from .tokens import AccessToken, FunctionCall

DOMAIN_NAME = "Ethereum Access Token"
DOMAIN_VERSION = "1"

EIP712_DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
FUNCTION_CALL_TYPE = "FunctionCall(bytes4 functionSignature,address target,address caller,bytes parameters)"
# Referenced struct types are appended after the primary type.
ACCESS_TOKEN_TYPE = "AccessToken(uint256 expiry,FunctionCall functionCall)" + FUNCTION_CALL_TYPE

EIP712_DOMAIN_TYPEHASH = keccak(text=EIP712_DOMAIN_TYPE)
FUNCTION_CALL_TYPEHASH = keccak(text=FUNCTION_CALL_TYPE)
ACCESS_TOKEN_TYPEHASH = keccak(text=ACCESS_TOKEN_TYPE)

# Typed-data schema in the layout consumed by wallets and eth_account.
ACCESS_TOKEN_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "FunctionCall": [
        {"name": "functionSignature", "type": "bytes4"},
        {"name": "target", "type": "address"},
        {"name": "caller", "type": "address"},
        {"name": "parameters", "type": "bytes"},
    ],
    "AccessToken": [
        {"name": "expiry", "type": "uint256"},
        {"name": "functionCall", "type": "FunctionCall"},
    ],
}


@dataclass(frozen=True)
class Domain:
    """EIP-712 domain of one verifier instance."""
    chain_id: int
    verifying_contract: str
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def __post_init__(self):
        object.__setattr__(self, "verifying_contract", normalize_identity(self.verifying_contract))
        if isinstance(self.chain_id, bool) or not isinstance(self.chain_id, int) or self.chain_id < 0:
            raise eat_error(EAT_E_BAD_REQUEST, "chain_id must be a non-negative integer")

    def separator(self) -> bytes:
        return keccak(
            encode(
                ["bytes32", "bytes32", "bytes32", "uint256", "address"],
                [
                    EIP712_DOMAIN_TYPEHASH,
                    keccak(text=self.name),
                    keccak(text=self.version),
                    self.chain_id,
                    self.verifying_contract,
                ],
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def hash_parameters(parameters: bytes) -> bytes:
    return keccak(bytes(parameters))


def hash_function_call(function_call: FunctionCall) -> bytes:
    return keccak(
        encode(
            ["bytes32", "bytes4", "address", "address", "bytes32"],
            [
                FUNCTION_CALL_TYPEHASH,
                function_call.function_signature,
                function_call.target,
                function_call.caller,
                hash_parameters(function_call.parameters),
            ],
        )
    )


def hash_token_struct(token: AccessToken) -> bytes:
    return keccak(
        encode(
            ["bytes32", "uint256", "bytes32"],
            [ACCESS_TOKEN_TYPEHASH, token.expiry, hash_function_call(token.function_call)],
        )
    )


def hash_token(domain_separator: bytes, token: AccessToken) -> bytes:
    """The 32-byte digest an issuer signs for `token` under `domain_separator`."""
    if len(domain_separator) != 32:
        raise eat_error(EAT_E_BAD_REQUEST, "domain separator must be 32 bytes")
    return keccak(b"\x19\x01" + bytes(domain_separator) + hash_token_struct(token))


def typed_data(domain: Domain, token: AccessToken) -> Dict[str, Any]:
    """Full EIP-712 message for wallet signing (`eth_signTypedData_v4`)."""
    return {
        "types": ACCESS_TOKEN_TYPES,
        "primaryType": "AccessToken",
        "domain": domain.to_dict(),
        "message": token.to_dict(),
    }


# ---------------------------
# Parameter packing
# ---------------------------

@dataclass(frozen=True)
class TypedParameter:
    """One call argument tagged with its ABI type, e.g. ("uint256", 5)."""
    kind: str
    value: Any


def pack_parameters(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """ABI-encode call arguments, in order, into the token's parameter blob.

    This is the encoding a contract sees for the arguments that follow
    `(uint8 v, bytes32 r, bytes32 s, uint256 expiry)` in its calldata.
    """
    if len(types) != len(values):
        raise eat_error(EAT_E_BAD_REQUEST, "parameter types and values differ in length",
                        types=len(types), values=len(values))
    if not types:
        return b""
    try:
        return encode(list(types), list(values))
    except (EncodingError, TypeError, ValueError) as e:
        raise eat_error(EAT_E_BAD_REQUEST, f"cannot encode parameters: {e}") from e


def encode_parameters(params: Sequence[TypedParameter]) -> bytes:
    return pack_parameters([p.kind for p in params], [p.value for p in params])


def function_selector(signature_text: str) -> bytes:
    """First four bytes of keccak256 of a canonical function signature."""
    text = "".join(signature_text.split())
    if "(" not in text or not text.endswith(")"):
        raise eat_error(EAT_E_BAD_REQUEST, f"not a function signature: {signature_text!r}")
    return keccak(text=text)[:4]
