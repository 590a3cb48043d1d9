from datetime import datetime

import pytest
import requests
from freezegun import freeze_time
from jwskate import Jwk, Jwt

from dpop_client_credentials import (
    AuthorizationError,
    ClientIdentity,
    ClientSecretPost,
    DPoPClientCredentialsClient,
    DPoPKey,
    DPoPToken,
    InvalidTokenResponse,
    PrivateKeyJwt,
    PublicApp,
    RepeatedNonceChallenge,
    SigningError,
    TransportError,
    UnsupportedClientCredentials,
    validate_dpop_proof,
)
from tests.conftest import FailingSigner, RequestsMocker, form_data


@freeze_time()
def test_client_credentials(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str, client_id: str, client_secret: str
) -> None:
    client = DPoPClientCredentialsClient(identity, client_id=client_id, client_secret=client_secret)
    access_token = "Kz~8mXK1EalYznwH-LC-1fBAo.4Ljp~zsPE_NeO.gxU"
    requests_mock.post(
        token_endpoint,
        json={"access_token": access_token, "token_type": "DPoP", "expires_in": 2677, "scope": "read write"},
    )

    token = client.client_credentials()

    assert isinstance(token, DPoPToken)
    assert token.access_token == access_token
    assert token.is_dpop_bound
    assert token.dpop_key == identity.dpop_key
    assert token.scope == "read write"
    assert token.expires_at is not None

    assert requests_mock.called_once
    token_request = requests_mock.last_request
    assert token_request is not None
    assert token_request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert token_request.headers["Accept"] == "application/json"
    assert form_data(token_request.text) == {
        "grant_type": ["client_credentials"],
        "scope": ["read write"],
        "client_id": [client_id],
        "client_secret": [client_secret],
    }
    dpop = validate_dpop_proof(token_request.headers["DPoP"], htm="POST", htu=token_endpoint)
    assert dpop.headers == {"typ": "dpop+jwt", "alg": "ES256", "jwk": identity.dpop_key.public_jwk.minimize()}
    assert dpop.claims["iat"] == Jwt.timestamp()
    assert "nonce" not in dpop.claims


def test_client_credentials_with_nonce(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity, "client_id")
    dpop_nonce = "abc123"
    requests_mock.post(
        token_endpoint,
        [
            {"status_code": 400, "headers": {"DPoP-Nonce": dpop_nonce}, "json": {"error": "use_dpop_nonce"}},
            {"json": {"access_token": "access_token", "token_type": "DPoP", "expires_in": 60}},
        ],
    )

    token = client.client_credentials(audience="https://api.local")
    assert token.access_token == "access_token"

    assert requests_mock.call_count == 2
    first_request, second_request = requests_mock.request_history
    assert first_request.text == second_request.text
    assert form_data(second_request.text) == {
        "grant_type": ["client_credentials"],
        "scope": ["read write"],
        "audience": ["https://api.local"],
        "client_id": ["client_id"],
    }
    first_proof = validate_dpop_proof(first_request.headers["DPoP"], htm="POST", htu=token_endpoint)
    second_proof = validate_dpop_proof(second_request.headers["DPoP"], htm="POST", htu=token_endpoint, nonce=dpop_nonce)
    assert "nonce" not in first_proof.claims
    assert second_proof.claims["nonce"] == dpop_nonce
    assert first_proof.jwt_token_id != second_proof.jwt_token_id


def test_client_credentials_repeated_nonce(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(
        token_endpoint,
        status_code=400,
        headers={"DPoP-Nonce": "abc123"},
        json={"error": "use_dpop_nonce"},
    )

    with pytest.raises(RepeatedNonceChallenge):
        client.client_credentials()
    assert requests_mock.call_count == 2


def test_client_credentials_error(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity, ("client_id", "wrong_secret"))
    requests_mock.post(
        token_endpoint,
        status_code=401,
        json={"error": "invalid_client", "error_description": "Client authentication failed"},
    )

    with pytest.raises(AuthorizationError) as exc:
        client.client_credentials()
    assert exc.value.error == "invalid_client"
    assert exc.value.description == "Client authentication failed"
    assert exc.value.status_code == 401
    assert requests_mock.called_once


def test_client_credentials_timeout(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity, timeout=1)
    requests_mock.post(token_endpoint, exc=requests.exceptions.ConnectTimeout)

    with pytest.raises(TransportError, match="timed out after 1 seconds") as exc:
        client.client_credentials()
    assert isinstance(exc.value.__cause__, requests.Timeout)
    assert requests_mock.called_once


def test_client_credentials_connection_error(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(token_endpoint, exc=requests.exceptions.ConnectionError("connection refused"))

    with pytest.raises(TransportError, match="connection refused"):
        client.client_credentials()


def test_client_credentials_signing_error(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity, signer=FailingSigner())
    requests_mock.post(token_endpoint, json={"access_token": "access_token", "token_type": "DPoP"})

    with pytest.raises(SigningError):
        client.client_credentials()
    assert not requests_mock.called


@pytest.mark.parametrize(
    "json",
    [
        {"token_type": "DPoP"},
        {"access_token": "invalid characters: ?%", "token_type": "DPoP"},
        {"access_token": "access_token", "token_type": "MAC"},
        ["not", "an", "object"],
    ],
)
def test_client_credentials_invalid_token_response(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str, json: object
) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(token_endpoint, json=json)

    with pytest.raises(InvalidTokenResponse):
        client.client_credentials()
    assert requests_mock.called_once


def test_client_credentials_bearer_downgrade(
    requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str
) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(token_endpoint, json={"access_token": "access_token", "token_type": "Bearer"})

    token = client.client_credentials()
    assert token.token_type == "Bearer"
    assert not token.is_dpop_bound


def test_prepare_on_success(requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(token_endpoint, json={"access_token": "access_token", "token_type": "DPoP"})

    resolution = client.prepare()
    assert resolution.sent
    assert resolution.response is not None
    assert client.parse_token_response(resolution.response).access_token == "access_token"
    assert requests_mock.called_once


def test_prepare_with_nonce(requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(
        token_endpoint, status_code=400, headers={"DPoP-Nonce": "abc123"}, json={"error": "use_dpop_nonce"}
    )

    resolution = client.prepare()
    assert not resolution.sent
    assert resolution.nonce == "abc123"
    assert requests_mock.called_once
    assert resolution.request.dpop_proof != requests_mock.last_request.headers["DPoP"]
    assert resolution.request.body == "grant_type=client_credentials&scope=read+write"


def test_client_authentication_methods(identity: ClientIdentity, private_jwk: Jwk) -> None:
    assert DPoPClientCredentialsClient(identity).assembler.converter is None
    assert DPoPClientCredentialsClient(identity, "client_id").assembler.converter == PublicApp("client_id")
    assert DPoPClientCredentialsClient(identity, ("client_id", "secret")).assembler.converter == ClientSecretPost(
        "client_id", "secret"
    )
    assert isinstance(DPoPClientCredentialsClient(identity, ("client_id", private_jwk)).assembler.converter, PrivateKeyJwt)
    assert isinstance(
        DPoPClientCredentialsClient(identity, client_id="client_id", private_key=private_jwk).assembler.converter,
        PrivateKeyJwt,
    )

    with pytest.raises(UnsupportedClientCredentials):
        DPoPClientCredentialsClient(identity, "client_id", client_secret="secret")


def test_independent_attempts(requests_mock: RequestsMocker, token_endpoint: str) -> None:
    identity = ClientIdentity(token_endpoint, dpop_key=DPoPKey.generate(alg="ES512"))
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(
        token_endpoint,
        [
            {"status_code": 400, "headers": {"DPoP-Nonce": "n1"}, "json": {"error": "use_dpop_nonce"}},
            {"json": {"access_token": "first", "token_type": "DPoP"}},
            {"status_code": 400, "headers": {"DPoP-Nonce": "n2"}, "json": {"error": "use_dpop_nonce"}},
            {"json": {"access_token": "second", "token_type": "DPoP"}},
        ],
    )

    assert client.client_credentials().access_token == "first"
    assert client.client_credentials().access_token == "second"
    assert requests_mock.call_count == 4
    nonces = [
        validate_dpop_proof(r.headers["DPoP"], htm="POST", htu=token_endpoint).claims.get("nonce")
        for r in requests_mock.request_history
    ]
    assert nonces == [None, "n1", None, "n2"]


@freeze_time("2024-01-01 00:00:00")
def test_token_expiration(requests_mock: RequestsMocker, identity: ClientIdentity, token_endpoint: str) -> None:
    client = DPoPClientCredentialsClient(identity)
    requests_mock.post(token_endpoint, json={"access_token": "access_token", "token_type": "DPoP", "expires_in": 60})

    token = client.client_credentials()
    assert isinstance(token.expires_at, datetime)
    assert token.is_expired() is False
    assert token.is_expired(leeway=120) is True
