"""DPoP proof generation and validation (RFC9449), for Token Endpoint requests.

A DPoP proof is a short-lived signed JWT binding an HTTP request (method and target URI, and
a server provided nonce when one is required) to a client-held private key. Each proof is
single-use: a fresh `jti` and `iat` are included each time a proof is generated.

"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import TYPE_CHECKING, Any, Callable, Sequence
from uuid import uuid4

import jwskate
from attrs import define, field, frozen, setters
from furl import furl  # type: ignore[import-untyped]
from typing_extensions import Protocol, Self

from .exceptions import SigningError

if TYPE_CHECKING:
    from .identity import ClientIdentity

DPOP_JWT_TYP = "dpop+jwt"


class InvalidDPoPKey(ValueError):
    """Raised when a DPoPKey is initialized with a non-suitable key."""

    def __init__(self, key: Any) -> None:
        super().__init__("The key you are trying to use with DPoP is not an asymmetric private key.")
        self.key = key


class InvalidDPoPAlg(ValueError):
    """Raised when an invalid or unsupported DPoP alg is given."""

    def __init__(self, alg: str) -> None:
        super().__init__("DPoP proofing require an asymmetric signing alg.")
        self.alg = alg


class InvalidDPoPProof(ValueError):
    """Raised when a DPoP proof does not verify."""

    def __init__(self, proof: bytes, message: str) -> None:
        super().__init__(f"Invalid DPoP proof: {message}")
        self.proof = proof


class SigningCapability(Protocol):
    """The interface for anything able to sign DPoP proofs.

    [DPoPKey][dpop_client_credentials.dpop.DPoPKey] is the default implementation. You may provide your own,
    for example to delegate signatures to an HSM or a remote KMS.

    """

    def sign(self, method: str, uri: str, nonce: str | None, identity: ClientIdentity) -> str:
        """Return a serialized DPoP proof for the given method, uri and nonce."""
        ...  # pragma: no cover


def normalize_htu(uri: str) -> str:
    """Normalize a target URI for use as `htu` claim.

    Scheme and host are lowercased, and the query and fragment parts are removed.

    """
    url = furl(uri).remove(query=True, fragment=True)
    if url.scheme:
        url.scheme = url.scheme.lower()
    if url.host:
        url.host = url.host.lower()
    return str(url.url)


@define(init=False)
class DPoPKey:
    """Wrapper around a DPoP proof signature key.

    This handles DPoP proof generation. It does not keep track of any nonce: nonces provided by
    the AS are only valid for the request they are retried with.
    You may subclass or otherwise customize this class to implement custom behavior,
    like adding or modifying claims to the proofs.

    Args:
        private_key: the private key to use for DPoP proof signatures.
        alg: the alg to use for signatures, if not specified of the `private_key`.
        jti_generator: a callable that generates unique JWT Token ID (jti) values to include in proofs.
        iat_generator: a callable that generates the Issuer Date (iat) to include in proofs.
        jwt_typ: the token type (`typ`) header to include in the generated proofs.

    """

    alg: str = field(on_setattr=setters.frozen)
    private_key: jwskate.Jwk = field(on_setattr=setters.frozen, repr=False)
    jti_generator: Callable[[], str] = field(on_setattr=setters.frozen, repr=False)
    iat_generator: Callable[[], int] = field(on_setattr=setters.frozen, repr=False)
    jwt_typ: str = field(on_setattr=setters.frozen, repr=False)

    def __init__(
        self,
        private_key: Any,
        alg: str | None = None,
        jti_generator: Callable[[], str] = lambda: str(uuid4()),
        iat_generator: Callable[[], int] = lambda: jwskate.Jwt.timestamp(),
        jwt_typ: str = DPOP_JWT_TYP,
    ) -> None:
        try:
            private_key = jwskate.to_jwk(private_key).check(is_private=True, is_symmetric=False)
        except ValueError as exc:
            raise InvalidDPoPKey(private_key) from exc

        try:
            alg_name = jwskate.select_alg_class(
                private_key.SIGNATURE_ALGORITHMS, jwk_alg=private_key.alg, alg=alg
            ).name
        except ValueError as exc:
            raise InvalidDPoPAlg(str(alg)) from exc

        self.__attrs_init__(
            alg=alg_name,
            private_key=private_key,
            jti_generator=jti_generator,
            iat_generator=iat_generator,
            jwt_typ=jwt_typ,
        )

    @classmethod
    def generate(
        cls,
        alg: str = jwskate.SignatureAlgs.ES256,
        jwt_typ: str = DPOP_JWT_TYP,
        jti_generator: Callable[[], str] = lambda: str(uuid4()),
        iat_generator: Callable[[], int] = lambda: jwskate.Jwt.timestamp(),
    ) -> Self:
        """Generate a new DPoPKey with a new private key that is suitable for the given `alg`."""
        if alg not in jwskate.SignatureAlgs.ALL_ASYMMETRIC:
            raise InvalidDPoPAlg(alg)
        key = jwskate.Jwk.generate(alg=alg)
        return cls(
            private_key=key,
            jti_generator=jti_generator,
            iat_generator=iat_generator,
            jwt_typ=jwt_typ,
        )

    @cached_property
    def public_jwk(self) -> jwskate.Jwk:
        """The public JWK key that matches the private key."""
        return self.private_key.public_jwk()

    @cached_property
    def dpop_jkt(self) -> str:
        """The key thumbprint, which is the value of the `cnf.jkt` claim in DPoP-bound tokens."""
        return self.private_key.thumbprint()

    def proof(self, htm: str, htu: str, nonce: str | None = None) -> jwskate.SignedJwt:
        """Generate a DPoP proof.

        Proof will contain the following claims:

            - The HTTP method (`htm`) and target URI (`htu`) that are passed as parameters.
            - The `iat` claim will be generated by the configured `iat_generator`, which defaults to current datetime.
            - The `jti` claim will be generated by the configured `jti_generator`, which defaults to a random UUID4.
            - The `nonce` claim, if a `nonce` is provided.

        The proof will be signed with the private key of this DPoPKey, using the configured `alg` signature algorithm.

        Args:
            htm: The HTTP method value of the request to which the proof is attached.
            htu: The HTTP target URI of the request to which the proof is attached. Query and Fragment parts will
                be automatically removed before being used as `htu` value in the generated proof.
            nonce: A recent nonce provided via the DPoP-Nonce HTTP header by the AS.

        Returns:
            the proof value (as a signed JWT)

        """
        htu = furl(htu).remove(query=True, fragment=True).url
        proof_claims = {"jti": self.jti_generator(), "htm": htm, "htu": htu, "iat": self.iat_generator()}
        if nonce:
            proof_claims["nonce"] = nonce
        return jwskate.SignedJwt.sign(
            proof_claims,
            key=self.private_key,
            alg=self.alg,
            typ=self.jwt_typ,
            extra_headers={"jwk": self.public_jwk},
        )

    def sign(self, method: str, uri: str, nonce: str | None, identity: ClientIdentity) -> str:
        """Implement the `SigningCapability` interface."""
        return str(self.proof(htm=method, htu=uri, nonce=nonce))


@frozen
class ProofBuilder:
    """Build DPoP proofs for Token Endpoint requests.

    The signing capability is passed explicitly. If none is given, the `dpop_key` from the
    `ClientIdentity` is used.

    Each proof is checked with `validate_dpop_proof()` before it is returned, so that a
    misbehaving signer is reported as a `SigningError` instead of being rejected by the AS.

    Args:
        signer: the signing capability to use, instead of the identity `dpop_key`.
        verify: if `False`, skip the check of built proofs.

    """

    signer: SigningCapability | None = None
    verify: bool = True

    def build(self, method: str, uri: str, nonce: str | None, identity: ClientIdentity) -> str:
        """Build a fresh, signed DPoP proof.

        Args:
            method: the HTTP method of the request. It is uppercased.
            uri: the target URI of the request. It is normalized with `normalize_htu()`.
            nonce: the nonce provided by the AS, if any.
            identity: the client identity, holding the default key material.

        Returns:
            the serialized DPoP proof.

        Raises:
            SigningError: if the proof cannot be signed.

        """
        htm = method.upper()
        htu = normalize_htu(uri)
        signer = self.signer if self.signer is not None else identity.dpop_key
        try:
            proof = signer.sign(htm, htu, nonce, identity)
        except SigningError:
            raise
        except Exception as exc:
            raise SigningError(htm, htu, nonce) from exc
        if not proof:
            raise SigningError(htm, htu, nonce)
        if self.verify:
            try:
                validate_dpop_proof(proof, htm=htm, htu=htu, nonce=nonce)
            except InvalidDPoPProof as exc:
                raise SigningError(htm, htu, nonce) from exc
        return str(proof)


def _proof_key(proof: bytes, proof_jwt: jwskate.SignedJwt) -> jwskate.Jwk:
    """Return the public key embedded in the `jwk` header of a DPoP proof."""
    if "jwk" not in proof_jwt.headers:
        raise InvalidDPoPProof(proof, "'jwk' header is missing")
    try:
        public_jwk = jwskate.Jwk(proof_jwt.headers["jwk"])
    except jwskate.InvalidJwk as exc:
        raise InvalidDPoPProof(proof, "'jwk' header is not a valid JWK key.") from exc
    if public_jwk.is_private or public_jwk.is_symmetric:
        raise InvalidDPoPProof(proof, "'jwk' header is a private or symmetric key.")
    return public_jwk


def validate_dpop_proof(
    proof: str | bytes,
    *,
    htm: str,
    htu: str,
    nonce: str | None = None,
    leeway: int = 60,
    alg: str | None = None,
    algs: Sequence[str] = (),
) -> jwskate.SignedJwt:
    """Check that a DPoP proof is usable for a given Token Endpoint request.

    The proof must be a `dpop+jwt` signed with the asymmetric key from its own `jwk` header,
    issued within `leeway` seconds from now, with a `jti`, and with `htm`, `htu` (and `nonce`,
    when one is expected) matching the request.

    Args:
        proof: the serialized DPoP proof.
        htm: the expected HTTP method.
        htu: the expected HTTP target URI, without query and fragment.
        nonce: the expected nonce, if the AS provided one.
        leeway: the allowed clock skew for the `iat` claim, in seconds.
        alg: the allowed signature alg. If neither `alg` or `algs` is given, the proof `alg` header is used.
        algs: the allowed signature algs.

    Returns:
        the validated proof, as a `SignedJwt`.

    Raises:
        InvalidDPoPProof: if any check fails.

    """
    if not isinstance(proof, bytes):
        proof = proof.encode()
    try:
        proof_jwt = jwskate.SignedJwt(proof)
    except jwskate.InvalidJwt as exc:
        raise InvalidDPoPProof(proof, "not a syntactically valid JWT") from exc
    if proof_jwt.typ != DPOP_JWT_TYP:
        raise InvalidDPoPProof(proof, f"typ '{proof_jwt.typ}' is not the expected '{DPOP_JWT_TYP}'.")

    public_jwk = _proof_key(proof, proof_jwt)
    allowed_algs = list(algs) or [alg or proof_jwt.alg]
    try:
        verified = proof_jwt.verify_signature(public_jwk, algs=allowed_algs)
    except ValueError as exc:
        raise InvalidDPoPProof(proof, f"signature cannot be verified with alg {allowed_algs}.") from exc
    if not verified:
        raise InvalidDPoPProof(proof, "signature does not verify.")

    issued_at = proof_jwt.issued_at
    if issued_at is None:
        raise InvalidDPoPProof(proof, "a Issued At (iat) claim is missing.")
    now = datetime.now(tz=timezone.utc)
    if abs((issued_at - now).total_seconds()) >= leeway:
        raise InvalidDPoPProof(proof, f"'iat' {issued_at} is more than {leeway} seconds away from {now}.")
    if not proof_jwt.jwt_token_id:
        raise InvalidDPoPProof(proof, "a Unique Identifier (jti) claim is missing.")

    expected_claims = {"htm": htm, "htu": htu}
    if nonce:
        expected_claims["nonce"] = nonce
    for claim, expected in expected_claims.items():
        received = proof_jwt.claims.get(claim)
        if received != expected:
            raise InvalidDPoPProof(proof, f"'{claim}' is '{received}', expected '{expected}'.")

    return proof_jwt
