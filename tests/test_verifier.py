from concurrent.futures import ThreadPoolExecutor

import pytest
from eth_abi import encode
from eth_utils import keccak

from eat_gateway.errors import (
    EATError,
    EAT_E_ALREADY_USED,
    EAT_E_EXPIRED,
    EAT_E_INVALID_SIGNATURE_S,
    EAT_E_INVALID_SIGNATURE_V,
    EAT_E_VERIFICATION_FAILURE,
    MSG_ALREADY_USED,
    MSG_EXPIRED,
    MSG_VERIFICATION_FAILURE,
)
from eat_gateway.issuer import TokenIssuer
from eat_gateway.signatures import SECP256K1_N

OTHER_CALLER = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
OTHER_TARGET = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"


def _consume_error(verifier, token, sig):
    with pytest.raises(EATError) as ei:
        verifier.verify_and_consume(token, *sig.vrs)
    return ei.value


def test_token_is_accepted_exactly_once(verifier, issued):
    assert verifier.verify_and_consume(issued.token, *issued.vrs) is True

    err = _consume_error(verifier, issued.token, issued.signature)
    assert err.code == EAT_E_ALREADY_USED
    assert err.message == MSG_ALREADY_USED


def test_swapped_caller_fails_generically(verifier, issued):
    forged = issued.token.with_changes(caller=OTHER_CALLER)
    err = _consume_error(verifier, forged, issued.signature)
    assert err.code == EAT_E_VERIFICATION_FAILURE
    assert err.message == MSG_VERIFICATION_FAILURE
    # the genuine token is untouched by the failed attempt
    assert verifier.verify_and_consume(issued.token, *issued.vrs)


@pytest.mark.parametrize(
    "changes",
    [
        {"target": OTHER_TARGET},
        {"caller": OTHER_CALLER},
        {"function_signature": b"\xde\xad\xbe\xee"},
        {"parameters": b"\xfe"},
        {"parameters": b"\xff\x00"},
        {"parameters": b""},
        {"expiry": 1_700_000_011},
    ],
)
def test_every_field_is_bound(verifier, issued, changes):
    forged = issued.token.with_changes(**changes)
    assert verifier.verify(forged, *issued.vrs) is False
    assert _consume_error(verifier, forged, issued.signature).code == EAT_E_VERIFICATION_FAILURE


def test_expiry_boundary(verifier, issued, clock):
    clock.now = issued.token.expiry
    assert verifier.verify(issued.token, *issued.vrs)

    clock.now = issued.token.expiry + 1
    with pytest.raises(EATError) as ei:
        verifier.verify(issued.token, *issued.vrs)
    assert ei.value.code == EAT_E_EXPIRED
    assert ei.value.message == MSG_EXPIRED
    err = _consume_error(verifier, issued.token, issued.signature)
    assert err.code == EAT_E_EXPIRED


def test_malformed_signature_is_reported_before_expiry(verifier, issued, clock):
    clock.now = issued.token.expiry + 100
    with pytest.raises(EATError) as ei:
        verifier.verify(issued.token, 29, issued.signature.r, issued.signature.s)
    assert ei.value.code == EAT_E_INVALID_SIGNATURE_V

    high_s = SECP256K1_N - issued.signature.s_int
    with pytest.raises(EATError) as ei:
        verifier.verify_and_consume(issued.token, 55 - issued.signature.v, issued.signature.r, high_s)
    assert ei.value.code == EAT_E_INVALID_SIGNATURE_S


def test_verify_is_a_dry_run(verifier, issued):
    assert verifier.verify(issued.token, *issued.vrs)
    assert verifier.verify(issued.token, *issued.vrs)
    assert not verifier.is_consumed(issued.token, *issued.vrs)

    verifier.verify_and_consume(issued.token, *issued.vrs)
    assert verifier.is_consumed(issued.token, *issued.vrs)
    # consumption is a replay property, not a validity one
    assert verifier.verify(issued.token, *issued.vrs)


def test_unknown_issuer_is_rejected(verifier, signers, clock, issued):
    rogue = TokenIssuer(verifier.domain, signers.outsider, clock=clock)
    forged = rogue.sign(issued.token)
    assert verifier.verify_signer_of(issued.token, *forged.vrs) == signers.outsider.address
    assert verifier.verify(issued.token, *forged.vrs) is False
    assert _consume_error(verifier, issued.token, forged).code == EAT_E_VERIFICATION_FAILURE


def test_deactivation_takes_effect_immediately(verifier, signers, issued):
    verifier.deactivate_issuers(signers.intermediate.address, [signers.issuer.address])
    assert _consume_error(verifier, issued.token, issued.signature).code == EAT_E_VERIFICATION_FAILURE

    verifier.activate_issuers(signers.intermediate.address, [signers.issuer.address])
    assert verifier.verify_and_consume(issued.token, *issued.vrs)


def test_rotated_out_intermediate_loses_authority(verifier, signers):
    verifier.rotate_intermediate(signers.root.address, signers.outsider.address)
    with pytest.raises(EATError):
        verifier.activate_issuers(signers.intermediate.address, [signers.outsider.address])
    assert verifier.get_intermediate_key() == signers.outsider.address
    # issuers activated by the previous intermediate stay active
    assert verifier.is_active_issuer(signers.issuer.address)


def test_token_for_one_verifier_is_rejected_by_another(verifier_factory, issued):
    other = verifier_factory(address=OTHER_TARGET)
    assert other.verify(issued.token, *issued.vrs) is False


def test_signer_of_returns_issuer(verifier, signers, issued):
    assert verifier.verify_signer_of(issued.token, *issued.vrs) == signers.issuer.address


def test_fingerprint_layout(verifier, issued):
    sig = issued.signature
    expected = keccak(encode(["bytes32", "bytes32", "bytes32"], [sig.r, sig.s, verifier.digest(issued.token)]))
    assert verifier.fingerprint(issued.token, sig) == expected


def test_concurrent_consumption_succeeds_once(verifier, issued):
    def attempt(_):
        try:
            return verifier.verify_and_consume(issued.token, *issued.vrs)
        except EATError as e:
            return e.code

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1
    assert results.count(EAT_E_ALREADY_USED) == 15


def test_failed_body_does_not_consume(verifier, issued):
    with pytest.raises(RuntimeError):
        with verifier.consuming(issued.token, *issued.vrs):
            raise RuntimeError("guarded body failed")
    assert not verifier.is_consumed(issued.token, *issued.vrs)

    with verifier.consuming(issued.token, *issued.vrs) as fp:
        assert fp == verifier.fingerprint(issued.token, issued.signature)
    assert verifier.is_consumed(issued.token, *issued.vrs)


def test_reservation_blocks_concurrent_use(verifier, issued):
    with verifier.consuming(issued.token, *issued.vrs):
        err = _consume_error(verifier, issued.token, issued.signature)
        assert err.code == EAT_E_ALREADY_USED


def test_key_getters(verifier, signers):
    assert verifier.get_root_key() == signers.root.address
    assert verifier.get_intermediate_key() == signers.intermediate.address
    assert verifier.get_active_issuers() == (signers.issuer.address,)
