"""
Device-Token Claims and Registration Guard.

The officer's identity is not fetched separately: it is embedded in the
claims of the device token the backend issues at registration.
:func:`decode_claims` reads those claims without verifying the signature
(the device has no verification key; the backend re-verifies every token
it receives).

:func:`require_registered_device` produces a decorator that gates
coroutine functions behind a registered device.

Usage::

    from eprometna.jwt_auth import decode_claims, require_registered_device

    user = decode_claims(device_token)

    guard = require_registered_device(session_manager)

    @guard
    async def scan(payload: str) -> ScanSession: ...
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional, ParamSpec, TypeVar

import jwt
from pydantic import ValidationError as PydanticValidationError

from eprometna.errors import DeviceNotRegisteredError
from eprometna.models.user import UserRecord

if TYPE_CHECKING:  # pragma: no cover - imported for static type checking only
    from eprometna.services.session_manager import SessionManager

P = ParamSpec("P")
R = TypeVar("R")

_log = logging.getLogger("eprometna.jwt_auth")

# Claim names tried, in order, for each UserRecord field.
_CLAIM_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "uuid", "userId", "sub"),
    "first_name": ("firstName", "given_name"),
    "last_name": ("lastName", "family_name"),
    "role": ("role",),
    "email": ("email",),
}

# Registered JWT claims that say nothing about the user.
_REGISTERED_CLAIMS: frozenset[str] = frozenset(
    {"iss", "sub", "aud", "exp", "nbf", "iat", "jti"}
)


def decode_claims(token: Optional[str]) -> Optional[UserRecord]:
    """Return the ``UserRecord`` embedded in *token*, or ``None``.

    ``None`` is returned for an empty token, a token that is not a
    decodable JWT, and a token whose claims carry no user identifier.
    The function is pure: no I/O, no signature or expiry check.
    """
    if not token:
        return None

    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError as exc:
        _log.debug("Device token is not a decodable JWT: %s", exc)
        return None

    fields: dict[str, Any] = {}
    for field, aliases in _CLAIM_ALIASES.items():
        for alias in aliases:
            if claims.get(alias) is not None:
                fields[field] = str(claims[alias])
                break

    if "id" not in fields:
        _log.debug("Device token claims carry no user identifier.")
        return None

    consumed = {alias for aliases in _CLAIM_ALIASES.values() for alias in aliases}
    for name, value in claims.items():
        if name not in consumed and name not in _REGISTERED_CLAIMS:
            fields.setdefault(name, value)

    try:
        return UserRecord.model_validate(fields)
    except PydanticValidationError as exc:
        _log.debug("Device token claims do not form a user record: %s", exc)
        return None


def require_registered_device(
    session: "SessionManager",
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Return a decorator that enforces device registration via *session*.

    The returned decorator checks ``session.is_device_registered()``
    before every call to the wrapped coroutine function.  If the device
    holds no device token, :class:`DeviceNotRegisteredError` is raised
    and the coroutine is never awaited.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not session.is_device_registered():
                raise DeviceNotRegisteredError()
            return await func(*args, **kwargs)

        return wrapper

    return decorator
