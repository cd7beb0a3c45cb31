import pytest

from eat_gateway.codec import function_selector, pack_parameters
from eat_gateway.consumer import AccessTokenConsumer, CallContext, token_gated
from eat_gateway.errors import EATError, EAT_E_ALREADY_USED, EAT_E_BAD_REQUEST, EAT_E_VERIFICATION_FAILURE

CALLER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
OTHER_CALLER = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
RECIPIENT = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"


class Vault(AccessTokenConsumer):
    def __init__(self, verifier, address=None):
        super().__init__(verifier, address or verifier.address)
        self.withdrawals = []

    @token_gated("withdraw(address,uint256)", ["address", "uint256"])
    def withdraw(self, to, amount):
        self.withdrawals.append((to, amount))
        return amount

    @token_gated("explode()")
    def explode(self):
        raise RuntimeError("boom")


def _withdraw_token(token_issuer, vault, caller=CALLER, to=RECIPIENT, amount=5):
    return token_issuer.issue_for_call(
        "withdraw(address,uint256)",
        target=vault.address,
        caller=caller,
        arg_types=["address", "uint256"],
        args=[to, amount],
        ttl_seconds=30,
    )


def test_gated_method_runs_once(verifier, token_issuer):
    vault = Vault(verifier)
    issued = _withdraw_token(token_issuer, vault)
    v, r, s = issued.vrs

    assert vault.withdraw(CALLER, v, r, s, issued.token.expiry, RECIPIENT, 5) == 5
    with pytest.raises(EATError) as ei:
        vault.withdraw(CALLER, v, r, s, issued.token.expiry, RECIPIENT, 5)
    assert ei.value.code == EAT_E_ALREADY_USED
    assert vault.withdrawals == [(RECIPIENT, 5)]


@pytest.mark.parametrize(
    "caller,to,amount",
    [
        (OTHER_CALLER, RECIPIENT, 5),
        (CALLER, OTHER_CALLER, 5),
        (CALLER, RECIPIENT, 6),
    ],
)
def test_gated_method_rejects_other_context(verifier, token_issuer, caller, to, amount):
    vault = Vault(verifier)
    issued = _withdraw_token(token_issuer, vault)

    with pytest.raises(EATError) as ei:
        vault.withdraw(caller, *issued.vrs, issued.token.expiry, to, amount)
    assert ei.value.code == EAT_E_VERIFICATION_FAILURE
    assert vault.withdrawals == []


def test_token_for_other_consumer_is_rejected(verifier, token_issuer):
    vault = Vault(verifier)
    other_vault = Vault(verifier, address=RECIPIENT)
    issued = _withdraw_token(token_issuer, vault)

    with pytest.raises(EATError) as ei:
        other_vault.withdraw(CALLER, *issued.vrs, issued.token.expiry, RECIPIENT, 5)
    assert ei.value.code == EAT_E_VERIFICATION_FAILURE


def test_token_for_other_function_is_rejected(verifier, token_issuer):
    vault = Vault(verifier)
    issued = token_issuer.issue_for_call("explode()", target=vault.address, caller=CALLER)

    with pytest.raises(EATError) as ei:
        vault.withdraw(CALLER, *issued.vrs, issued.token.expiry, RECIPIENT, 5)
    assert ei.value.code == EAT_E_VERIFICATION_FAILURE


def test_failing_body_leaves_token_unconsumed(verifier, token_issuer):
    vault = Vault(verifier)
    issued = token_issuer.issue_for_call("explode()", target=vault.address, caller=CALLER)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            vault.explode(CALLER, *issued.vrs, issued.token.expiry)
    assert not verifier.is_consumed(issued.token, *issued.vrs)


def test_gated_method_exposes_selector():
    assert Vault.withdraw.selector == function_selector("withdraw(address,uint256)")
    assert Vault.withdraw.arg_types == ("address", "uint256")
    assert Vault.withdraw.__name__ == "withdraw"


def test_context_and_verify_call(verifier, token_issuer):
    consumer = AccessTokenConsumer(verifier, verifier.address)
    issued = token_issuer.issue_for_call(
        "ping(uint256)", target=verifier.address, caller=CALLER, arg_types=["uint256"], args=[7]
    )
    ctx = consumer.context(CALLER, "ping(uint256)", ["uint256"], [7])
    assert ctx.arguments == pack_parameters(["uint256"], [7])
    assert ctx.to_token(issued.token.expiry) == issued.token

    assert consumer.verify_call(ctx, *issued.vrs, issued.token.expiry)
    with pytest.raises(EATError):
        consumer.verify_call(ctx, *issued.vrs, issued.token.expiry)


def test_guarded_runs_callable(verifier, token_issuer):
    consumer = AccessTokenConsumer(verifier, verifier.address)
    issued = token_issuer.issue_for_call("ping()", target=verifier.address, caller=CALLER)
    ctx = consumer.context(CALLER, "ping()")

    assert consumer.guarded(ctx, *issued.vrs, issued.token.expiry, lambda x: x * 2, 21) == 42
    assert verifier.is_consumed(issued.token, *issued.vrs)


def test_context_with_foreign_target_fails(verifier, token_issuer):
    consumer = AccessTokenConsumer(verifier, verifier.address)
    issued = token_issuer.issue_for_call("ping()", target=RECIPIENT, caller=CALLER)
    ctx = CallContext(caller=CALLER, target=RECIPIENT, selector=function_selector("ping()"))

    with pytest.raises(EATError) as ei:
        consumer.verify_call(ctx, *issued.vrs, issued.token.expiry)
    assert ei.value.code == EAT_E_VERIFICATION_FAILURE


def test_call_context_rejects_bad_selector():
    with pytest.raises(EATError) as ei:
        CallContext(caller=CALLER, target=RECIPIENT, selector=b"\x00")
    assert ei.value.code == EAT_E_BAD_REQUEST
    with pytest.raises(EATError) as ei:
        CallContext(caller=CALLER, target=RECIPIENT, selector="0xnothex")
    assert ei.value.code == EAT_E_BAD_REQUEST


def test_call_context_accepts_hex_selector_and_arguments():
    ctx = CallContext(caller=CALLER, target=RECIPIENT, selector="0xa9059cbb", arguments="0xff")
    assert ctx.selector == function_selector("transfer(address,uint256)")
    assert ctx.arguments == b"\xff"
