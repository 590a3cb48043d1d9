from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qs

import pytest
from jwskate import Jwk
from requests_mock import Mocker

from dpop_client_credentials import (
    ClientIdentity,
    DPoPKey,
    GrantRequest,
    TransportError,
    TransportResponse,
)

if TYPE_CHECKING:
    from pytest import FixtureRequest as __FixtureRequest

    class FixtureRequest(__FixtureRequest):
        param: str

    class RequestsMocker(Mocker):
        def reset_mock(self) -> None:
            ...

else:
    from pytest import FixtureRequest

    RequestsMocker = Mocker


class FakeTransport:
    """An in-memory Transport that returns scripted responses, and records each request it receives."""

    def __init__(self, *responses: Union[TransportResponse, Exception]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def send(
        self,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        body: Sequence[Tuple[str, str]],
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        self.calls.append({"method": method, "uri": uri, "headers": dict(headers), "body": list(body), "timeout": timeout})
        if not self.responses:
            raise AssertionError("unexpected request")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FailingSigner:
    """A signing capability that always fails."""

    def __init__(self) -> None:
        self.calls = 0

    def sign(self, method: str, uri: str, nonce: Optional[str], identity: ClientIdentity) -> str:
        self.calls += 1
        raise RuntimeError("HSM unavailable")


def form_data(body: str) -> Dict[str, List[str]]:
    return parse_qs(body, strict_parsing=True, keep_blank_values=True)


def token_response(access_token: str = "Kz~8mXK1EalYznwH-LC-1fBAo.4Ljp~zsPE_NeO.gxU") -> TransportResponse:
    return TransportResponse(
        status_code=200,
        headers={"Content-Type": "application/json"},
        body=f'{{"access_token": "{access_token}", "token_type": "DPoP", "expires_in": 3600}}',
    )


def nonce_challenge(nonce: Optional[str] = "abc123") -> TransportResponse:
    headers = {"Content-Type": "application/json"}
    if nonce is not None:
        headers["DPoP-Nonce"] = nonce
    return TransportResponse(
        status_code=400,
        headers=headers,
        body='{"error": "use_dpop_nonce", "error_description": "Authorization server requires nonce in DPoP proof"}',
    )


@pytest.fixture(scope="session")
def token_endpoint() -> str:
    return "https://as.local/oauth/token"


@pytest.fixture(scope="session")
def client_id() -> str:
    return "client_id"


@pytest.fixture(scope="session")
def client_secret() -> str:
    return "client_secret"


@pytest.fixture(scope="session")
def dpop_key() -> DPoPKey:
    return DPoPKey.generate(alg="ES256")


@pytest.fixture
def identity(token_endpoint: str, dpop_key: DPoPKey) -> ClientIdentity:
    return ClientIdentity(token_endpoint, scope=["read", "write"], dpop_key=dpop_key)


@pytest.fixture
def grant_request(identity: ClientIdentity) -> GrantRequest:
    return GrantRequest(identity)


@pytest.fixture(scope="session")
def private_jwk() -> Jwk:
    return Jwk.generate(alg="ES256").with_kid_thumbprint()


@pytest.fixture
def transport_error(token_endpoint: str) -> TransportError:
    return TransportError("POST", token_endpoint, "timed out after 10 seconds")
