"""This module contains `DPoPToken`, the representation of a DPoP-bound access token."""

from __future__ import annotations

import re
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar

from attrs import Factory, field, frozen

from .dpop import DPoPKey


class AccessTokenTypes(str, Enum):
    """An enum of standardised `access_token` types."""

    BEARER = "Bearer"
    DPOP = "DPoP"


class UnsupportedTokenType(ValueError):
    """Raised when an unsupported token_type is provided."""

    def __init__(self, token_type: str) -> None:
        super().__init__(f"Unsupported token_type: {token_type}")
        self.token_type = token_type


class InvalidDPoPAccessToken(ValueError):
    """Raised when an access token contains invalid characters."""

    def __init__(self, access_token: str) -> None:
        super().__init__("""\
This DPoP token contains invalid characters. DPoP tokens are limited to a set of 68 characters,
to avoid encoding inconsistencies when doing the token value hashing for the DPoP proof.""")
        self.access_token = access_token


token68_pattern = re.compile(r"^[a-zA-Z0-9\-._~+\/]+=*$")


def expires_at_from(expires_in: int | str | None) -> datetime | None:
    """Convert an `expires_in` hint, in seconds, to an expiration date.

    Values that are not an integer, or a string containing an integer, are ignored.

    """
    seconds = None
    if isinstance(expires_in, int):
        seconds = expires_in
    elif isinstance(expires_in, str):
        with suppress(ValueError):
            seconds = int(expires_in)
    if seconds is None:
        return None
    return datetime.now(tz=timezone.utc).replace(microsecond=0) + timedelta(seconds=seconds)


@frozen(init=False)
class DPoPToken:
    """Represent a DPoP token (RFC9449), as returned by the Token Endpoint.

    A DPoP token is very much like a Bearer token, with an additional private key bound to it.
    The AS may decide to issue a plain `Bearer` token instead: in that case, `token_type` is `Bearer`
    and `is_dpop_bound` is `False`.

    Args:
        access_token: an `access_token`, as returned by the AS.
        dpop_key: the DPoP key that was used to obtain that token.
        expires_at: an expiration date.
        expires_in: the `expires_in` hint returned by the AS, used when `expires_at` is not given.
        scope: a `scope`, as returned by the AS, if any.
        token_type: a `token_type`, as returned by the AS.
        **kwargs: additional parameters as returned by the AS, if any.

    """

    TOKEN_TYPE: ClassVar[str] = AccessTokenTypes.DPOP.value

    access_token: str
    dpop_key: DPoPKey = field(repr=False)
    expires_at: datetime | None = None
    scope: str | None = None
    token_type: str = TOKEN_TYPE
    kwargs: dict[str, Any] = Factory(dict)

    def __init__(
        self,
        access_token: str,
        *,
        dpop_key: DPoPKey,
        expires_at: datetime | None = None,
        expires_in: int | str | None = None,
        scope: str | None = None,
        token_type: str = TOKEN_TYPE,
        **kwargs: Any,
    ) -> None:
        if token_type.lower() not in (t.value.lower() for t in AccessTokenTypes):
            raise UnsupportedTokenType(token_type)
        if not token68_pattern.match(access_token):
            raise InvalidDPoPAccessToken(access_token)
        if expires_at is None:
            expires_at = expires_at_from(expires_in)

        self.__attrs_init__(
            access_token=access_token,
            dpop_key=dpop_key,
            expires_at=expires_at,
            scope=scope,
            token_type=token_type,
            kwargs=kwargs,
        )

    @property
    def is_dpop_bound(self) -> bool:
        """`True` if the AS issued a DPoP token, `False` if it downgraded to a Bearer token."""
        return self.token_type.lower() == self.TOKEN_TYPE.lower()

    def is_expired(self, leeway: int = 0) -> bool | None:
        """Check if the access token is expired.

        Args:
            leeway: If the token expires in the next given number of seconds,
                then consider it expired already.

        Returns:
            One of:

            - `True` if the access token is expired
            - `False` if it is still valid
            - `None` if there is no expires_in hint.

        """
        if self.expires_at:
            return datetime.now(tz=timezone.utc) + timedelta(seconds=leeway) > self.expires_at
        return None

    @property
    def expires_in(self) -> int | None:
        """Number of seconds until expiration."""
        if self.expires_at:
            return int((self.expires_at - datetime.now(tz=timezone.utc)).total_seconds())
        return None

    def as_dict(self) -> dict[str, Any]:
        """Return a dict of parameters, as they would be returned by the Token Endpoint."""
        r: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.expires_in:
            r["expires_in"] = self.expires_in
        if self.scope:
            r["scope"] = self.scope
        r.update(self.kwargs)
        return r
