"""This module implements OAuth 2.0 Client Authentication Methods, as parameter converters.

An OAuth 2.0 Client must authenticate to the AS whenever it sends a request to the Token Endpoint,
by including appropriate credentials. Each class from this module is a
[ParameterConverter][dpop_client_credentials.parameters.ParameterConverter]: when called with a
`GrantRequest`, it returns the client authentication parameters to include in the request body.

"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Tuple, Union
from uuid import uuid4

from attrs import field, frozen
from jwskate import Jwk, Jwt, SignatureAlgs, SymmetricJwk, to_jwk

if TYPE_CHECKING:
    from .identity import GrantRequest
    from .parameters import Parameters

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


@frozen
class BaseClientAuthenticationMethod:
    """Base class for all Client Authentication methods.

    Subclasses return their authentication parameters when called with a `GrantRequest`.

    """

    client_id: str

    def __call__(self, grant_request: GrantRequest) -> Parameters:
        """Return the client authentication parameters."""
        return [("client_id", self.client_id)]


@frozen
class PublicApp(BaseClientAuthenticationMethod):
    """Implement the `none` authentication method for public apps.

    Those only send their client_id to the Authorization Server.

    """


@frozen(init=False)
class ClientSecretPost(BaseClientAuthenticationMethod):
    """Implement `client_secret_post` client authentication method.

    With this method, the client inserts its client_id and client_secret in each token request.

    Args:
        client_id: Client ID
        client_secret: Client Secret

    """

    client_secret: str = field(repr=False)

    def __init__(self, client_id: str, client_secret: str) -> None:
        self.__attrs_init__(
            client_id=client_id,
            client_secret=client_secret,
        )

    def __call__(self, grant_request: GrantRequest) -> Parameters:
        """Add the `client_id` and `client_secret` parameters."""
        return [*super().__call__(grant_request), ("client_secret", self.client_secret)]


@frozen
class BaseClientAssertionAuthenticationMethod(BaseClientAuthenticationMethod):
    """Base class for assertion-based client authentication methods."""

    lifetime: int
    jti_gen: Callable[[], str]
    aud: str | None

    def client_assertion(self, audience: str) -> str:
        """Generate a Client Assertion for a specific audience.

        Args:
            audience: the audience to use for the `aud` claim of the generated Client Assertion.

        Returns:
            a Client Assertion, as `str`.

        """
        raise NotImplementedError

    def assertion_claims(self, audience: str) -> dict[str, Any]:
        """Return the claims for a Client Assertion."""
        iat = int(datetime.now(tz=timezone.utc).timestamp())
        return {
            "iss": self.client_id,
            "sub": self.client_id,
            "aud": audience,
            "iat": iat,
            "exp": iat + self.lifetime,
            "jti": str(self.jti_gen()),
        }

    def __call__(self, grant_request: GrantRequest) -> Parameters:
        """Add `client_id`, `client_assertion_type` and `client_assertion` parameters.

        The audience is the Token Endpoint URI, unless an explicit `aud` was provided.

        """
        audience = self.aud or grant_request.identity.token_endpoint
        return [
            *super().__call__(grant_request),
            ("client_assertion_type", CLIENT_ASSERTION_TYPE),
            ("client_assertion", self.client_assertion(audience)),
        ]


@frozen(init=False)
class ClientSecretJwt(BaseClientAssertionAuthenticationMethod):
    """Implement `client_secret_jwt` client authentication method.

    With this method, the client generates a client assertion, then symmetrically signs it with its Client Secret.

    Args:
        client_id: the `client_id` to use.
        client_secret: the `client_secret` to use to sign generated Client Assertions.
        alg: the alg to use to sign generated Client Assertions.
        lifetime: the lifetime to use for generated Client Assertions.
        jti_gen: a function to generate JWT Token Ids (`jti`) for generated Client Assertions.
        aud: the audience value to use. If `None` (default), the Token Endpoint URI will be used.

    """

    client_secret: str = field(repr=False)
    alg: str

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        lifetime: int = 60,
        alg: str = SignatureAlgs.HS256,
        jti_gen: Callable[[], str] = lambda: str(uuid4()),
        aud: str | None = None,
    ) -> None:
        self.__attrs_init__(
            client_id=client_id,
            client_secret=client_secret,
            lifetime=lifetime,
            alg=alg,
            jti_gen=jti_gen,
            aud=aud,
        )

    def client_assertion(self, audience: str) -> str:
        """Generate a Client Assertion, symmetrically signed with the `client_secret` as key."""
        jwk = SymmetricJwk.from_bytes(self.client_secret.encode())
        return str(Jwt.sign(claims=self.assertion_claims(audience), key=jwk, alg=self.alg))


class InvalidClientAssertionSigningKeyOrAlg(ValueError):
    """Raised when the client assertion signing alg is not specified or invalid."""

    def __init__(self, alg: str | None) -> None:
        super().__init__("""\
An asymmetric private signing key, and an alg that is supported by the signing key is required.
It can be provided either:
- as part of the private `Jwk`, in the parameter 'alg'
- or passed as parameter `alg` when initializing a `PrivateKeyJwt`.
Examples of valid `alg` values and matching key type:
- 'RS256', 'RS512' (with a key of type RSA)
- 'ES256', 'ES512' (with a key of type EC)
The private key must include a Key ID (in its 'kid' parameter).
""")
        self.alg = alg


@frozen(init=False)
class PrivateKeyJwt(BaseClientAssertionAuthenticationMethod):
    """Implement `private_key_jwt` client authentication method.

    With this method, the client generates and sends a client_assertion, that is asymmetrically
    signed with a private key, in each token request.

    Note that the key used for client assertions should not be the same as the DPoP key.

    Args:
        client_id: the `client_id` to use.
        private_jwk: the private key to use to sign generated Client Assertions.
        alg: the alg to use to sign generated Client Assertions.
        lifetime: the lifetime to use for generated Client Assertions.
        jti_gen: a function to generate JWT Token Ids (`jti`) for generated Client Assertions.
        aud: the audience value to use. If `None` (default), the Token Endpoint URI will be used.

    """

    private_jwk: Jwk = field(converter=to_jwk, repr=False)
    alg: str | None

    def __init__(
        self,
        client_id: str,
        private_jwk: Jwk | dict[str, Any] | Any,
        *,
        alg: str | None = None,
        lifetime: int = 60,
        jti_gen: Callable[[], str] = lambda: str(uuid4()),
        aud: str | None = None,
    ) -> None:
        self.__attrs_init__(
            client_id=client_id,
            private_jwk=private_jwk,
            alg=alg,
            lifetime=lifetime,
            jti_gen=jti_gen,
            aud=aud,
        )

        alg = self.private_jwk.alg or alg
        if not alg:
            raise InvalidClientAssertionSigningKeyOrAlg(alg)

        if alg not in self.private_jwk.supported_signing_algorithms():
            raise InvalidClientAssertionSigningKeyOrAlg(alg)

        if not self.private_jwk.is_private or self.private_jwk.is_symmetric:
            raise InvalidClientAssertionSigningKeyOrAlg(alg)

        if not self.private_jwk.get("kid"):
            raise InvalidClientAssertionSigningKeyOrAlg(alg)

    def client_assertion(self, audience: str) -> str:
        """Generate a Client Assertion, asymmetrically signed with `private_jwk` as key."""
        return str(Jwt.sign(claims=self.assertion_claims(audience), key=self.private_jwk, alg=self.alg))


class UnsupportedClientCredentials(TypeError, ValueError):
    """Raised when unsupported client credentials are provided."""


ClientAuthentication = Union[
    Callable[["GrantRequest"], Any],
    Tuple[str, str],
    Tuple[str, Jwk],
    Tuple[str, Dict[str, Any]],
    str,
    None,
]


def client_auth_factory(
    auth: ClientAuthentication,
    *,
    client_id: str | None = None,
    client_secret: str | None = None,
    private_key: Jwk | dict[str, Any] | None = None,
) -> Callable[[GrantRequest], Any] | None:
    """Initialize the appropriate client authentication converter based on the provided parameters.

    Args:
        auth: can be:

            - any callable accepting a `GrantRequest` (which will be used directly)
            - a tuple of (client_id, client_secret), used to initialize a `ClientSecretPost`,
            - a tuple of (client_id, jwk), used to initialize a `PrivateKeyJwt` (`jwk` being an
              instance of `jwskate.Jwk` or a `dict`),
            - a `client_id`, as `str`, used to initialize a `PublicApp`,
            - or `None`, to pass `client_id` and other credentials as dedicated parameters, see
              below.
        client_id: the Client ID to use for this client
        client_secret: the Client Secret to use for this client, if any
        private_key: the private key to use for private_key_jwt authentication method

    Returns:
        a converter that provides the client authentication parameters, or `None` if no client
        credentials are provided at all.

    """
    if auth is not None and (client_id is not None or client_secret is not None or private_key is not None):
        msg = """\
Please use either `auth` parameter to provide an authentication method,
or use `client_id` and one of `client_secret` or `private_key`.
"""
        raise UnsupportedClientCredentials(msg)

    if isinstance(auth, str):
        client_id = auth
    elif isinstance(auth, tuple) and len(auth) == 2:  # noqa: PLR2004
        client_id, credential = auth
        if isinstance(credential, (Jwk, dict)):
            private_key = credential
        elif isinstance(credential, str):
            client_secret = credential
        else:
            msg = "This credential type is not supported:"
            raise UnsupportedClientCredentials(msg, type(credential), credential)
    elif callable(auth):
        return auth
    elif auth is not None:
        msg = "This authentication method is not supported:"
        raise UnsupportedClientCredentials(msg, type(auth), auth)

    if client_id is None:
        if client_secret is not None or private_key is not None:
            msg = "A client_id must be provided."
            raise UnsupportedClientCredentials(msg)
        return None

    if private_key is not None:
        return PrivateKeyJwt(client_id, private_jwk=private_key)
    if client_secret is None:
        return PublicApp(str(client_id))

    return ClientSecretPost(str(client_id), str(client_secret))
