from types import SimpleNamespace

import pytest

from eat_gateway.issuer import TokenIssuer
from eat_gateway.signing import LocalKeySigner
from eat_gateway.verifier import AccessTokenVerifier

NOW = 1_700_000_000
CHAIN_ID = 31337
VERIFIER_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
CALLER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
OTHER_CALLER = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signers():
    return SimpleNamespace(
        root=LocalKeySigner(b"\x01" * 32),
        intermediate=LocalKeySigner(b"\x02" * 32),
        issuer=LocalKeySigner(b"\x03" * 32),
        outsider=LocalKeySigner(b"\x04" * 32),
    )


def make_verifier(signers, clock, address=VERIFIER_ADDRESS, **kwargs):
    """R -> I -> {A}: root rotates in the intermediate, which activates one issuer."""
    verifier = AccessTokenVerifier.create(
        signers.root.address, chain_id=CHAIN_ID, address=address, clock=clock, **kwargs
    )
    verifier.rotate_intermediate(signers.root.address, signers.intermediate.address)
    verifier.activate_issuers(signers.intermediate.address, [signers.issuer.address])
    return verifier


@pytest.fixture
def verifier_factory(signers, clock):
    def factory(**kwargs):
        return make_verifier(signers, clock, **kwargs)
    return factory


@pytest.fixture
def verifier(verifier_factory):
    return verifier_factory()


@pytest.fixture
def token_issuer(verifier, signers, clock):
    return TokenIssuer(verifier.domain, signers.issuer, clock=clock)


@pytest.fixture
def issued(token_issuer):
    """{now+10, 0xdeadbeef, X, C, 0xff} signed by the active issuer."""
    return token_issuer.issue(
        function_signature="0xdeadbeef",
        target=VERIFIER_ADDRESS,
        caller=CALLER,
        parameters="0xff",
        ttl_seconds=10,
    )
