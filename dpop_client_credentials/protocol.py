"""The DPoP nonce challenge/retry protocol for `client_credentials` token requests.

A token request is first sent with a DPoP proof that contains no nonce. If the AS requires a
nonce, it answers with a `400` error `use_dpop_nonce` and a `DPoP-Nonce` header. The proof is then
rebuilt with that nonce, and the request is retried exactly once.

A [DPoPTokenRequest][dpop_client_credentials.protocol.DPoPTokenRequest] runs this protocol for a
single token acquisition attempt. It is not reusable, and must not be shared between threads.

"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from attrs import frozen

from .dpop import ProofBuilder
from .exceptions import (
    AuthorizationError,
    ChallengeParseError,
    ProtocolStateError,
    RepeatedNonceChallenge,
)
from .parameters import ParameterAssembler
from .request import OutboundRequest
from .transport import RequestsTransport, TransportResponse

if TYPE_CHECKING:
    from .identity import GrantRequest
    from .transport import Transport

logger = logging.getLogger(__name__)

USE_DPOP_NONCE = "use_dpop_nonce"
DPOP_NONCE_HEADER = "DPoP-Nonce"
BAD_REQUEST = 400


class ProtocolState(Enum):
    """The states of a `DPoPTokenRequest`."""

    BUILDING = "building"
    AWAITING_RESPONSE = "awaiting_response"
    CHALLENGED = "challenged"
    RESOLVED = "resolved"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ProtocolState.RESOLVED, ProtocolState.FAILED})


@frozen
class Resolution:
    """The outcome of a `DPoPTokenRequest`.

    Args:
        request: the final request, which carries the last DPoP proof.
        response: the Token Endpoint response to `request`, or `None` if `request` is still to be sent.
        nonce: the nonce provided by the AS, if it sent a nonce challenge.

    """

    request: OutboundRequest
    response: TransportResponse | None = None
    nonce: str | None = None

    @property
    def sent(self) -> bool:
        """`True` if `request` has already been sent."""
        return self.response is not None


def error_fields(response: TransportResponse) -> tuple[str | None, str | None, str | None]:
    """Extract the `error`, `error_description` and `error_uri` from an error response.

    Non-JSON bodies, or bodies without those members, yield `None` values.

    """
    try:
        data: Any = response.json()
    except ValueError:
        return None, None, None
    if not isinstance(data, dict):
        return None, None, None

    def member(name: str) -> str | None:
        value = data.get(name)
        return value if isinstance(value, str) else None

    return member("error"), member("error_description"), member("error_uri")


def is_nonce_challenge(response: TransportResponse) -> bool:
    """Check whether a response is a `use_dpop_nonce` error.

    The body is parsed as JSON if possible. Otherwise, any mention of `use_dpop_nonce` counts.

    """
    if response.status_code != BAD_REQUEST:
        return False
    error, _, _ = error_fields(response)
    if error is not None:
        return error == USE_DPOP_NONCE
    return USE_DPOP_NONCE in response.body


def authorization_error(response: TransportResponse) -> AuthorizationError:
    """Build an `AuthorizationError` from an error response."""
    error, description, uri = error_fields(response)
    return AuthorizationError(response, error=error, description=description, uri=uri)


class DPoPTokenRequest:
    """Run the DPoP token request protocol for one `GrantRequest`.

    Usage is either:

    - `resolve()`, which sends the initial request, and returns either the successful exchange, or the
      request to retry with a nonce-bound proof, for the caller to send.
    - `execute()`, which does the same, then sends the retry itself when there is one.

    Each instance sends at most 2 requests, and can be used only once. If no `transport` is
    given, a `RequestsTransport` is created, and closed once a terminal state is reached.

    Args:
        grant_request: the grant request to obtain a token for.
        proof_builder: the `ProofBuilder` to use.
        assembler: the `ParameterAssembler` to use.
        transport: the `Transport` to use to send requests.
        timeout: the timeout for each request, in seconds.

    """

    def __init__(
        self,
        grant_request: GrantRequest,
        *,
        proof_builder: ProofBuilder | None = None,
        assembler: ParameterAssembler | None = None,
        transport: Transport | None = None,
        timeout: float | None = 10,
    ) -> None:
        self.grant_request = grant_request
        self.proof_builder = proof_builder or ProofBuilder()
        self.assembler = assembler or ParameterAssembler()
        self._owned_transport: RequestsTransport | None = None
        if transport is None:
            transport = self._owned_transport = RequestsTransport()
        self.transport = transport
        self.timeout = timeout
        self.state = ProtocolState.BUILDING
        self.transport_calls = 0

    def _transition(self, state: ProtocolState) -> None:
        logger.debug("Token request to %s: %s -> %s", self.token_endpoint, self.state.name, state.name)
        self.state = state
        if state in TERMINAL_STATES and self._owned_transport is not None:
            self._owned_transport.close()

    def _fail(self, exc: Exception) -> None:
        logger.debug("Token request to %s failed: %r", self.token_endpoint, exc)
        self._transition(ProtocolState.FAILED)

    @property
    def token_endpoint(self) -> str:
        """The Token Endpoint URI."""
        return self.grant_request.identity.token_endpoint

    def build_proof(self, method: str, nonce: str | None = None) -> str:
        """Build a fresh DPoP proof for the Token Endpoint."""
        return self.proof_builder.build(method, self.token_endpoint, nonce, self.grant_request.identity)

    def _send(self, request: OutboundRequest) -> TransportResponse:
        self.transport_calls += 1
        return self.transport.send(
            request.method,
            request.uri,
            request.header_dict,
            request.data,
            timeout=self.timeout,
        )

    def _challenge_nonce(self, response: TransportResponse) -> str:
        """Return the nonce from a nonce challenge, or raise the appropriate error."""
        if not is_nonce_challenge(response):
            raise authorization_error(response)
        nonce = response.headers.get(DPOP_NONCE_HEADER)
        if not nonce:
            raise ChallengeParseError(response)
        return nonce

    def _initial_exchange(self) -> Resolution:
        """Send the initial request.

        This ends in RESOLVED state if the AS accepted the request, or in CHALLENGED state,
        with the rebuilt request, if it sent a nonce challenge.

        """
        if self.state is not ProtocolState.BUILDING:
            raise ProtocolStateError(self.state)
        try:
            data = self.assembler.assemble(self.grant_request)
            request = OutboundRequest.token_request(self.token_endpoint, data, self.build_proof("POST"))
            self._transition(ProtocolState.AWAITING_RESPONSE)

            response = self._send(request)
            if response.ok:
                self._transition(ProtocolState.RESOLVED)
                return Resolution(request=request, response=response)

            nonce = self._challenge_nonce(response)
            logger.debug("Token Endpoint %s requested a DPoP nonce", self.token_endpoint)
            self._transition(ProtocolState.CHALLENGED)

            return Resolution(request=request.with_proof(self.build_proof(request.method, nonce)), nonce=nonce)
        except Exception as exc:
            self._fail(exc)
            raise

    def resolve(self) -> Resolution:
        """Send the initial request, and handle a nonce challenge.

        Returns:
            a `Resolution`. If the AS accepted the initial request, it contains that request and
            its response. If the AS sent a nonce challenge, it contains the rebuilt request, with a
            nonce-bound proof, and no response: that request must be sent exactly once.

        Raises:
            ProtocolStateError: if this instance has already been used.
            SigningError: if a DPoP proof cannot be built.
            TransportError: if the initial request cannot be sent, or times out.
            ChallengeParseError: if the AS sent a nonce challenge without a `DPoP-Nonce` header.
            AuthorizationError: if the AS returned any other error.

        """
        resolution = self._initial_exchange()
        if self.state is ProtocolState.CHALLENGED:
            self._transition(ProtocolState.RESOLVED)
        return resolution

    def execute(self) -> Resolution:
        """Run the whole protocol, including the retry with a nonce, if the AS requires one.

        Returns:
            a `Resolution` containing the final request and its successful response.

        Raises:
            RepeatedNonceChallenge: if the AS sends another nonce challenge for the retried request.
            AuthorizationError: if the AS rejects either request.
            SigningError: if a DPoP proof cannot be built.
            TransportError: if a request cannot be sent, or times out.

        """
        resolution = self._initial_exchange()
        if resolution.sent:
            return resolution

        try:
            response = self._send(resolution.request)
        except Exception as exc:
            self._fail(exc)
            raise
        if response.ok:
            self._transition(ProtocolState.RESOLVED)
            return Resolution(request=resolution.request, response=response, nonce=resolution.nonce)

        if is_nonce_challenge(response):
            error: AuthorizationError = RepeatedNonceChallenge(response, nonce=resolution.nonce)
        else:
            error = authorization_error(response)
        self._fail(error)
        raise error
