"""Main module for `dpop_client_credentials`.

You can import any class from any submodule directly from this main module.
"""

from .client import DPoPClientCredentialsClient
from .client_authentication import (
    BaseClientAuthenticationMethod,
    ClientSecretJwt,
    ClientSecretPost,
    InvalidClientAssertionSigningKeyOrAlg,
    PrivateKeyJwt,
    PublicApp,
    UnsupportedClientCredentials,
    client_auth_factory,
)
from .dpop import (
    DPoPKey,
    InvalidDPoPAlg,
    InvalidDPoPKey,
    InvalidDPoPProof,
    ProofBuilder,
    SigningCapability,
    normalize_htu,
    validate_dpop_proof,
)
from .exceptions import (
    AuthorizationError,
    ChallengeParseError,
    DPoPClientCredentialsError,
    InvalidTokenResponse,
    ProtocolStateError,
    RepeatedNonceChallenge,
    SigningError,
    TransportError,
)
from .identity import (
    ClientIdentity,
    GrantRequest,
    GrantTypes,
    InvalidDiscoveryDocument,
    InvalidEndpointUri,
    InvalidParam,
    InvalidScopeParam,
)
from .parameters import ParameterAssembler, ParameterConverter, Parameters
from .protocol import DPoPTokenRequest, ProtocolState, Resolution
from .request import OutboundRequest
from .tokens import DPoPToken, InvalidDPoPAccessToken, UnsupportedTokenType
from .transport import RequestsTransport, Transport, TransportResponse
