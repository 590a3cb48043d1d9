"""This module contains all exception classes from `dpop_client_credentials`.

Every failure of a token acquisition attempt surfaces as a subclass of
[DPoPClientCredentialsError][dpop_client_credentials.exceptions.DPoPClientCredentialsError].

"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol import ProtocolState
    from .transport import TransportResponse


class DPoPClientCredentialsError(Exception):
    """Base class for all errors raised while acquiring a DPoP-bound token."""


class SigningError(DPoPClientCredentialsError):
    """Raised when a DPoP proof cannot be produced.

    This happens when the key material is invalid or unavailable, or when the signing operation
    itself fails. It is fatal for the current attempt and never retried.

    Args:
        method: the HTTP method the proof was built for
        uri: the HTTP target URI the proof was built for
        nonce: the DPoP nonce that was to be included in the proof, if any

    """

    def __init__(self, method: str, uri: str, nonce: str | None = None) -> None:
        super().__init__(f"Unable to create a DPoP proof for {method} {uri}")
        self.method = method
        self.uri = uri
        self.nonce = nonce


class TransportError(DPoPClientCredentialsError):
    """Raised when the HTTP exchange with the Token Endpoint fails at the network level.

    This includes connection failures and timeouts. There is no automatic retry.

    """

    def __init__(self, method: str, uri: str, message: str) -> None:
        super().__init__(f"{method} {uri} failed: {message}")
        self.method = method
        self.uri = uri


class AuthorizationError(DPoPClientCredentialsError):
    """Raised when the Token Endpoint rejects a token request.

    This contains the error, description and uri that are returned by the AS in the
    OAuth 2.0 standardised way, when available.

    Args:
        response: the raw response containing the error.
        error: the `error` identifier as returned by the AS.
        description: the `error_description` as returned by the AS.
        uri: the `error_uri` as returned by the AS.

    """

    def __init__(
        self,
        response: TransportResponse,
        error: str | None = None,
        description: str | None = None,
        uri: str | None = None,
        message: str | None = None,
    ) -> None:
        if message is None:
            message = f"The Token Endpoint returned an error (status {response.status_code}): {error or response.body}"
        super().__init__(message)
        self.response = response
        self.error = error
        self.description = description
        self.uri = uri

    @property
    def status_code(self) -> int:
        """The HTTP status code of the error response."""
        return self.response.status_code


class ChallengeParseError(AuthorizationError):
    """Raised when the AS requests a DPoP nonce but does not provide a usable `DPoP-Nonce` header."""

    def __init__(self, response: TransportResponse, error: str | None = "use_dpop_nonce") -> None:
        super().__init__(
            response,
            error=error,
            message="Server requested client to use a DPoP `nonce`, but the `DPoP-Nonce` HTTP header is missing.",
        )


class RepeatedNonceChallenge(AuthorizationError):
    """Raised when the AS sends another nonce challenge in response to a nonce-bound proof."""

    def __init__(self, response: TransportResponse, nonce: str | None) -> None:
        super().__init__(
            response,
            error="use_dpop_nonce",
            message="""\
Server requested client to use a DPoP `nonce`,
even though the retried request already included the nonce it just provided.""",
        )
        self.nonce = nonce


class InvalidTokenResponse(DPoPClientCredentialsError):
    """Raised when the Token Endpoint returns a successful, but non-standard, response."""

    def __init__(self, response: TransportResponse) -> None:
        super().__init__("The Token Endpoint returned an invalid token response.")
        self.response = response


class ProtocolStateError(DPoPClientCredentialsError, RuntimeError):
    """Raised when a token request is used again after it reached a terminal state."""

    def __init__(self, state: ProtocolState) -> None:
        super().__init__(f"This token request is already in its terminal state '{state.name}' and cannot be reused.")
        self.state = state
