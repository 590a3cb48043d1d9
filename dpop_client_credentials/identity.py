"""This module contains the client registration values: `ClientIdentity` and `GrantRequest`."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable

import jwskate
from attrs import Attribute, field, frozen
from furl import furl  # type: ignore[import-untyped]
from typing_extensions import Self

from .dpop import DPoPKey


class InvalidParam(ValueError):
    """Base class for invalid parameters errors."""


class InvalidEndpointUri(InvalidParam):
    """Raised when an invalid endpoint uri is provided."""

    def __init__(self, endpoint: str, uri: str, errors: list[str]) -> None:
        super().__init__(f"Invalid endpoint uri '{uri}' for '{endpoint}': {', '.join(errors)}")
        self.endpoint = endpoint
        self.uri = uri
        self.errors = errors


class InvalidScopeParam(InvalidParam):
    """Raised when an invalid scope parameter is provided."""

    def __init__(self, scope: object) -> None:
        super().__init__("""\
Unsupported scope value. It must be one of:
- a space separated `str` of scopes names
- an iterable of scope names as `str`
""")
        self.scope = scope


class InvalidDiscoveryDocument(InvalidParam):
    """Raised when handling an invalid Discovery Document."""

    def __init__(self, message: str, discovery_document: dict[str, Any]) -> None:
        super().__init__(f"Invalid discovery document: {message}")
        self.discovery_document = discovery_document


def endpoint_uri_errors(uri: str) -> list[str]:
    """List the reasons why `uri` is not suitable as a Token Endpoint URI.

    A Token Endpoint must use https on the default port, have a path other than `/`,
    and contain neither credentials nor a fragment. An empty list means `uri` is fine.

    """
    url = furl(uri)
    errors = []
    if url.scheme != "https":
        errors.append("must use https")
    if url.username or url.password:
        errors.append("must not contain basic credentials")
    if url.port != 443:  # noqa: PLR2004
        errors.append("no custom port number allowed")
    if url.fragment:
        errors.append("must not contain a uri fragment")
    if str(url.path) in ("", "/"):
        errors.append("must include a path other than /")
    return errors


class GrantTypes(str, Enum):
    """An enum of the `grant_type` values supported by this package."""

    CLIENT_CREDENTIALS = "client_credentials"


def scope_converter(scope: str | Iterable[str] | None) -> tuple[str, ...]:
    """Convert a `scope` parameter to a tuple of scope names.

    Scope names are deduplicated, with their original order preserved.

    """
    if scope is None:
        return ()
    if isinstance(scope, str):
        scope = scope.split()
    try:
        scopes = tuple(scope)
    except TypeError as exc:
        raise InvalidScopeParam(scope) from exc
    if not all(isinstance(s, str) for s in scopes):
        raise InvalidScopeParam(scope)
    return tuple(dict.fromkeys(s for s in scopes if s))


@frozen(init=False)
class ClientIdentity:
    """The registration of a client that obtains DPoP-bound tokens.

    Args:
        token_endpoint: the Token Endpoint URI where this client will get access tokens.
        scope: the scope to request, as a space separated `str` or an iterable of `str`.
        dpop_key: the key used to sign DPoP proofs. A new `ES256` key is generated if not provided.
        client_id: the Client ID, for informational purposes. Client authentication is handled by
            a parameter converter, see `dpop_client_credentials.client_authentication`.
        testing: if `True`, don't verify the validity of the `token_endpoint`.

    Example:
        ```python
        from dpop_client_credentials import ClientIdentity, DPoPKey

        identity = ClientIdentity(
            token_endpoint="https://my.as.local/token",
            scope="read write",
            dpop_key=DPoPKey.generate(alg="ES256"),
        )
        ```

    """

    token_endpoint: str = field()
    scopes: tuple[str, ...]
    dpop_key: DPoPKey = field(repr=False)
    client_id: str | None = None
    testing: bool = False

    def __init__(
        self,
        token_endpoint: str,
        scope: str | Iterable[str] | None = None,
        *,
        dpop_key: DPoPKey | None = None,
        client_id: str | None = None,
        testing: bool = False,
    ) -> None:
        if dpop_key is None:
            dpop_key = DPoPKey.generate()
        self.__attrs_init__(
            testing=testing,
            token_endpoint=token_endpoint,
            scopes=scope_converter(scope),
            dpop_key=dpop_key,
            client_id=client_id,
        )

    @token_endpoint.validator
    def validate_token_endpoint(self, attribute: Attribute[str], uri: str) -> str:
        """Validate that the Token Endpoint URI is suitable for use.

        If you need to disable some checks (for AS testing purposes only!), use `testing=True`.

        """
        if self.testing:
            return uri
        errors = endpoint_uri_errors(uri)
        if errors:
            raise InvalidEndpointUri(endpoint=attribute.name, uri=uri, errors=errors)
        return uri

    @property
    def scope(self) -> str | None:
        """The space separated scope value, or `None` if no scope is configured."""
        if not self.scopes:
            return None
        return " ".join(self.scopes)

    @classmethod
    def from_discovery_document(
        cls,
        discovery: dict[str, Any],
        issuer: str | None = None,
        *,
        scope: str | Iterable[str] | None = None,
        dpop_key: DPoPKey | None = None,
        client_id: str | None = None,
        testing: bool = False,
    ) -> Self:
        """Initialize a `ClientIdentity`, based on the server metadata from `discovery`.

        If no `dpop_key` is provided, a new key is generated, using the first asymmetric alg
        listed in `dpop_signing_alg_values_supported`, or `ES256` if the AS does not advertise any.

        Args:
             discovery: a dict of server metadata, in the same format as retrieved from a discovery endpoint.
             issuer: if an issuer is given, check that it matches the one mentioned in the document
             scope: the scope to request
             dpop_key: the key to sign DPoP proofs with
             client_id: the Client ID
             testing: if True, don't try to validate the endpoint urls that are part of the document

        Returns:
            a `ClientIdentity` initialized with the Token Endpoint from the discovery document

        Raises:
            InvalidDiscoveryDocument: if the document does not contain a usable `"token_endpoint"`,
                or mentions a different issuer.

        """
        if issuer and discovery.get("issuer") != issuer:
            msg = (
                f"mismatching `issuer` value in discovery document"
                f" (received '{discovery.get('issuer')}', expected '{issuer}')"
            )
            raise InvalidDiscoveryDocument(msg, discovery)

        token_endpoint = discovery.get("token_endpoint")
        if not isinstance(token_endpoint, str):
            msg = "token_endpoint not found in that discovery document"
            raise InvalidDiscoveryDocument(msg, discovery)

        if dpop_key is None:
            supported_algs = discovery.get("dpop_signing_alg_values_supported") or []
            alg = next(
                (a for a in supported_algs if a in jwskate.SignatureAlgs.ALL_ASYMMETRIC),
                jwskate.SignatureAlgs.ES256,
            )
            dpop_key = DPoPKey.generate(alg=alg)

        return cls(
            token_endpoint=token_endpoint,
            scope=scope,
            dpop_key=dpop_key,
            client_id=client_id,
            testing=testing,
        )


@frozen
class GrantRequest:
    """A single `client_credentials` grant request, for a given `ClientIdentity`.

    A `GrantRequest` is created once per token acquisition attempt.

    Args:
        identity: the client identity requesting a token.
        extra_parameters: additional parameters to include in the token request, in order.

    """

    identity: ClientIdentity
    extra_parameters: tuple[tuple[str, str], ...] = field(default=(), converter=tuple)
    grant_type: str = GrantTypes.CLIENT_CREDENTIALS.value
