"""This module contains `OutboundRequest`, the description of a token request to send."""

from __future__ import annotations

from typing import Iterable, Mapping
from urllib.parse import urlencode

from attrs import evolve, field, frozen

DPOP_HEADER = "DPoP"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _freeze_headers(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> tuple[tuple[str, str], ...]:
    """Freeze headers to a tuple of pairs, keeping only the last `DPoP` header, whatever its case."""
    pairs = list(headers.items()) if isinstance(headers, Mapping) else list(headers)
    proofs = [value for name, value in pairs if name.lower() == DPOP_HEADER.lower()]
    frozen_headers = tuple((name, value) for name, value in pairs if name.lower() != DPOP_HEADER.lower())
    if proofs:
        frozen_headers += ((DPOP_HEADER, proofs[-1]),)
    return frozen_headers


def _freeze_data(data: object) -> tuple[tuple[str, str], ...]:
    return tuple((str(k), str(v)) for k, v in data)  # type: ignore[attr-defined]


@frozen
class OutboundRequest:
    """A token request, ready to be sent to the Token Endpoint.

    An `OutboundRequest` carries at most one DPoP proof, in its `DPoP` header.
    Use `with_proof()` to obtain a copy with a different proof.

    Args:
        uri: the Token Endpoint URI.
        data: the form parameters, in order.
        headers: the HTTP headers.
        method: the HTTP method.

    """

    uri: str
    data: tuple[tuple[str, str], ...] = field(converter=_freeze_data)
    headers: tuple[tuple[str, str], ...] = field(converter=_freeze_headers)
    method: str = "POST"

    @classmethod
    def token_request(cls, uri: str, data: object, proof: str) -> OutboundRequest:
        """Build a form-encoded token request with a DPoP proof."""
        return cls(
            uri=uri,
            data=data,
            headers={
                "Content-Type": FORM_CONTENT_TYPE,
                "Accept": "application/json",
                DPOP_HEADER: proof,
            },
        )

    @property
    def header_dict(self) -> dict[str, str]:
        """The headers, as a `dict`."""
        return dict(self.headers)

    @property
    def dpop_proof(self) -> str | None:
        """The DPoP proof attached to this request, if any."""
        for name, value in self.headers:
            if name.lower() == DPOP_HEADER.lower():
                return value
        return None

    @property
    def body(self) -> str:
        """The url-encoded request body."""
        return urlencode(self.data)

    def with_proof(self, proof: str) -> OutboundRequest:
        """Return a copy of this request where the DPoP proof is replaced with `proof`."""
        return evolve(self, headers=(*self.headers, (DPOP_HEADER, proof)))
