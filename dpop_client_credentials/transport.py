"""HTTP transport used to send token requests.

The token request protocol only depends on the [Transport][dpop_client_credentials.transport.Transport]
interface. [RequestsTransport][dpop_client_credentials.transport.RequestsTransport] is the default
implementation, based on `requests`.

"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

import requests
from attrs import field, frozen
from requests.structures import CaseInsensitiveDict
from typing_extensions import Protocol

from .exceptions import TransportError

logger = logging.getLogger(__name__)


def headers_converter(headers: Mapping[str, str] | None) -> CaseInsensitiveDict[str]:
    """Convert a headers mapping to a case-insensitive dict."""
    return CaseInsensitiveDict(headers or {})


@frozen
class TransportResponse:
    """A response received from the Token Endpoint.

    Args:
        status_code: the HTTP status code.
        headers: the response headers. Lookups are case-insensitive.
        body: the response body, as text.

    """

    status_code: int
    headers: CaseInsensitiveDict[str] = field(factory=CaseInsensitiveDict, converter=headers_converter)
    body: str = ""

    @property
    def ok(self) -> bool:
        """`True` if the status code is not an error (lower than 400)."""
        return self.status_code < 400  # noqa: PLR2004

    def json(self) -> Any:
        """Parse the response body as JSON.

        Raises:
            ValueError: if the body is not valid JSON.

        """
        return json.loads(self.body)

    @classmethod
    def from_requests(cls, response: requests.Response) -> TransportResponse:
        """Initialize a `TransportResponse` from a `requests.Response`."""
        return cls(status_code=response.status_code, headers=response.headers, body=response.text)


class Transport(Protocol):
    """The interface for anything able to send an HTTP request and return its response."""

    def send(
        self,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        body: Sequence[tuple[str, str]],
        timeout: float | None = None,
    ) -> TransportResponse:
        """Send a request, and return its response.

        Raises:
            TransportError: if no response is obtained, including on timeouts.

        """
        ...  # pragma: no cover


@frozen(init=False)
class RequestsTransport:
    """A `Transport` based on a `requests.Session`.

    Args:
        session: a requests Session to use when sending HTTP requests.
            Useful if some extra parameters such as proxy or client certificate must be used
            to connect to the AS.

    """

    session: requests.Session

    def __init__(self, session: requests.Session | None = None) -> None:
        if session is None:
            session = requests.Session()
        self.__attrs_init__(session=session)

    def send(
        self,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        body: Sequence[tuple[str, str]],
        timeout: float | None = None,
    ) -> TransportResponse:
        """Send a form-encoded request with the session.

        Network failures and timeouts are raised as `TransportError`.

        """
        try:
            response = self.session.request(method, uri, headers=dict(headers), data=list(body), timeout=timeout)
        except requests.Timeout as exc:
            logger.debug("Request %s %s timed out after %s seconds", method, uri, timeout)
            raise TransportError(method, uri, f"timed out after {timeout} seconds") from exc
        except requests.RequestException as exc:
            logger.debug("Request %s %s failed: %s", method, uri, exc)
            raise TransportError(method, uri, str(exc)) from exc
        return TransportResponse.from_requests(response)

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()
