"""
Token-gated operations.

A consumer is any endpoint whose operations require an access token. For an
operation with logical signature f(*args) the wire signature becomes

    f(caller, v, r, s, expiry, *args)

where `caller` is supplied by the hosting environment (authenticated
session, API key, transaction sender), never by the token payload. The
consumer rebuilds the token from that ambient context:

    FunctionCall{selector(f), target=self.address, caller, abi.encode(args)}

so a token issued for another target, caller, function or argument list
simply fails verification.

Usage:

    class Vault(AccessTokenConsumer):
        @token_gated("withdraw(address,uint256)", ["address", "uint256"])
        def withdraw(self, to, amount):
            ...

    vault.withdraw(caller, v, r, s, expiry, to, amount)
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence, TypeVar

from .codec import function_selector, pack_parameters
from .errors import eat_error, EAT_E_BAD_REQUEST, EAT_E_VERIFICATION_FAILURE, MSG_VERIFICATION_FAILURE
from .keys import normalize_identity
from .tokens import AccessToken, FunctionCall, SELECTOR_LENGTH, _as_bytes
from .verifier import AccessTokenVerifier

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class CallContext:
    """Ambient facts about one invocation, as the host observed them."""
    caller: str
    target: str
    selector: bytes
    arguments: bytes = b""

    def __post_init__(self):
        object.__setattr__(self, "caller", normalize_identity(self.caller))
        object.__setattr__(self, "target", normalize_identity(self.target))
        selector = _as_bytes(self.selector, "selector")
        if len(selector) != SELECTOR_LENGTH:
            raise eat_error(EAT_E_BAD_REQUEST, "selector must be 4 bytes", length=len(selector))
        object.__setattr__(self, "selector", selector)
        object.__setattr__(self, "arguments", _as_bytes(self.arguments, "arguments"))

    def to_token(self, expiry: int) -> AccessToken:
        return AccessToken(
            expiry=expiry,
            function_call=FunctionCall(
                function_signature=self.selector,
                target=self.target,
                caller=self.caller,
                parameters=self.arguments,
            ),
        )


class AccessTokenConsumer:
    """Base for endpoints that accept access tokens from one verifier."""

    def __init__(self, verifier: AccessTokenVerifier, address: str):
        self.verifier = verifier
        self.address = normalize_identity(address)

    def context(self, caller: str, signature_text: str, arg_types: Sequence[str] = (),
                args: Sequence[Any] = ()) -> CallContext:
        return CallContext(
            caller=caller,
            target=self.address,
            selector=function_selector(signature_text),
            arguments=pack_parameters(arg_types, args),
        )

    def _token_for(self, ctx: CallContext, expiry: int) -> AccessToken:
        if ctx.target != self.address:
            raise eat_error(EAT_E_VERIFICATION_FAILURE, MSG_VERIFICATION_FAILURE)
        return ctx.to_token(expiry)

    def verify_call(self, ctx: CallContext, v: int, r: Any, s: Any, expiry: int) -> bool:
        """Consume the token for `ctx`. Returns True or raises EATError."""
        return self.verifier.verify_and_consume(self._token_for(ctx, expiry), v, r, s)

    @contextmanager
    def authorized(self, ctx: CallContext, v: int, r: Any, s: Any, expiry: int) -> Iterator[AccessToken]:
        """Run a block under the token for `ctx`; consumed only if the block succeeds."""
        token = self._token_for(ctx, expiry)
        with self.verifier.consuming(token, v, r, s):
            yield token

    def guarded(self, ctx: CallContext, v: int, r: Any, s: Any, expiry: int,
                fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        with self.authorized(ctx, v, r, s, expiry):
            return fn(*args, **kwargs)


def token_gated(signature_text: str, arg_types: Sequence[str] = ()) -> Callable[[F], F]:
    """Decorate an AccessTokenConsumer method so it requires a token.

    The decorated method is called as (caller, v, r, s, expiry, *args); the
    body only sees *args and runs only after the token checks pass.
    """
    selector = function_selector(signature_text)
    types = tuple(arg_types)

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self: AccessTokenConsumer, caller: str, v: int, r: Any, s: Any, expiry: int, *args: Any) -> Any:
            ctx = CallContext(
                caller=caller,
                target=self.address,
                selector=selector,
                arguments=pack_parameters(types, args),
            )
            with self.authorized(ctx, v, r, s, expiry):
                return fn(self, *args)

        wrapper.selector = selector  # type: ignore[attr-defined]
        wrapper.signature_text = signature_text  # type: ignore[attr-defined]
        wrapper.arg_types = types  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
