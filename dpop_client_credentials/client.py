"""This module contains the `DPoPClientCredentialsClient` class."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests
from attrs import frozen

from .client_authentication import ClientAuthentication, client_auth_factory
from .dpop import ProofBuilder, SigningCapability
from .exceptions import InvalidTokenResponse
from .identity import ClientIdentity, GrantRequest
from .parameters import ParameterAssembler
from .protocol import DPoPTokenRequest, Resolution
from .tokens import DPoPToken
from .transport import RequestsTransport

if TYPE_CHECKING:
    from jwskate import Jwk

    from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)


@frozen(init=False)
class DPoPClientCredentialsClient:
    """A client that obtains DPoP-bound access tokens with the `client_credentials` grant.

    Each call to `client_credentials()` is an independent token acquisition attempt, with its own
    `DPoPTokenRequest`. Tokens are not cached.

    Args:
        identity: the `ClientIdentity`, holding the Token Endpoint, scope and DPoP key.
        auth: the client authentication method. Can be:

            - a parameter converter, like an instance of
              [ClientSecretPost][dpop_client_credentials.client_authentication.ClientSecretPost],
            - a tuple of `(client_id, client_secret)`, or `(client_id, jwk)`,
            - a `client_id`, for public clients,
            - or `None`, in which case `client_id` and one of `client_secret` or `private_key` may be provided.
        client_id: client ID (use either this or `auth`)
        client_secret: client secret (use either this or `auth`)
        private_key: private key to use for `private_key_jwt` client authentication (use either this or `auth`)
        signer: a signing capability for DPoP proofs, instead of the `dpop_key` from `identity`.
        transport: the `Transport` to use. Defaults to a `RequestsTransport`.
        session: a requests Session to use with the default transport.
        timeout: the timeout for each request, in seconds.

    Example:
        ```python
        from dpop_client_credentials import ClientIdentity, DPoPClientCredentialsClient

        client = DPoPClientCredentialsClient(
            ClientIdentity("https://my.as.local/token", scope="read write"),
            client_id="client_id",
            client_secret="client_secret",
        )
        token = client.client_credentials()
        ```

    """

    identity: ClientIdentity
    assembler: ParameterAssembler
    proof_builder: ProofBuilder
    transport: Transport
    timeout: float | None = 10

    def __init__(
        self,
        identity: ClientIdentity,
        auth: ClientAuthentication = None,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        private_key: Jwk | dict[str, Any] | None = None,
        signer: SigningCapability | None = None,
        transport: Transport | None = None,
        session: requests.Session | None = None,
        timeout: float | None = 10,
    ) -> None:
        converter = client_auth_factory(
            auth,
            client_id=client_id,
            client_secret=client_secret,
            private_key=private_key,
        )
        if transport is None:
            transport = RequestsTransport(session)

        self.__attrs_init__(
            identity=identity,
            assembler=ParameterAssembler(converter),
            proof_builder=ProofBuilder(signer),
            transport=transport,
            timeout=timeout,
        )

    def grant_request(self, **token_kwargs: str) -> GrantRequest:
        """Create a `GrantRequest` with additional token request parameters, like `audience` or `resource`."""
        return GrantRequest(self.identity, extra_parameters=tuple(token_kwargs.items()))

    def token_request(self, **token_kwargs: str) -> DPoPTokenRequest:
        """Create a new `DPoPTokenRequest`, for a single token acquisition attempt."""
        return DPoPTokenRequest(
            self.grant_request(**token_kwargs),
            proof_builder=self.proof_builder,
            assembler=self.assembler,
            transport=self.transport,
            timeout=self.timeout,
        )

    def prepare(self, **token_kwargs: str) -> Resolution:
        """Send the initial token request, and return the request to use.

        If the AS accepts the initial request, the returned `Resolution` contains its response, and
        nothing must be sent again. Otherwise, it contains the request with a nonce-bound proof,
        which the caller must send exactly once.

        """
        return self.token_request(**token_kwargs).resolve()

    def client_credentials(self, **token_kwargs: str) -> DPoPToken:
        """Obtain a DPoP-bound access token with the `client_credentials` grant.

        Args:
            **token_kwargs: additional parameters for the token endpoint, alongside `grant_type` and `scope`.

        Returns:
            a `DPoPToken`

        Raises:
            AuthorizationError: if the AS rejects the request.
            SigningError: if a DPoP proof cannot be built.
            TransportError: if the AS cannot be reached, or the request times out.
            InvalidTokenResponse: if the AS returns a successful, but invalid, response.

        """
        resolution = self.token_request(**token_kwargs).execute()
        if resolution.response is None:  # pragma: no cover
            msg = "A completed token request must have a response."
            raise RuntimeError(msg)
        return self.parse_token_response(resolution.response)

    def parse_token_response(self, response: TransportResponse) -> DPoPToken:
        """Parse a successful response returned by the Token Endpoint.

        Args:
            response: the response returned by the Token Endpoint.

        Returns:
            a `DPoPToken`, bound to the `dpop_key` of this client identity.

        Raises:
            InvalidTokenResponse: if the response does not contain a valid token.

        """
        try:
            data = response.json()
            token = DPoPToken(dpop_key=self.identity.dpop_key, **data)
        except Exception as exc:
            raise InvalidTokenResponse(response) from exc
        if not token.is_dpop_bound:
            logger.debug("Token Endpoint %s returned a '%s' token", self.identity.token_endpoint, token.token_type)
        return token
