"""Default validator for signed compact tokens (JWT)."""

from __future__ import annotations

import asyncio
import binascii
import datetime as dt
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

import msgspec
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from .config import CompactTokenOptions, StrategyConfig
from .exceptions import AuthenticationError, ConfigurationError
from .keys import b64url_decode, load_public_key, verify_signature
from .serialization import json_decode
from .verification import Profile

__all__ = ["JwtValidator"]

_HMAC_ALGORITHMS = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}

_ASYMMETRIC_ALGORITHMS: dict[str, tuple[tuple[type[Any], ...], type[hashes.HashAlgorithm] | None]] = {
    "RS256": ((rsa.RSAPublicKey,), hashes.SHA256),
    "RS384": ((rsa.RSAPublicKey,), hashes.SHA384),
    "RS512": ((rsa.RSAPublicKey,), hashes.SHA512),
    "ES256": ((ec.EllipticCurvePublicKey,), hashes.SHA256),
    "ES384": ((ec.EllipticCurvePublicKey,), hashes.SHA384),
    "ES512": ((ec.EllipticCurvePublicKey,), hashes.SHA512),
    "EdDSA": ((ed25519.Ed25519PublicKey, ed448.Ed448PublicKey), None),
}


class JwtValidator:
    """Validate compact tokens signed with the configured certificate or shared secret."""

    def __init__(self, cert: str | None, options: CompactTokenOptions | None = None) -> None:
        self.options = options or CompactTokenOptions()
        supported = _HMAC_ALGORITHMS.keys() | _ASYMMETRIC_ALGORITHMS.keys()
        unknown = [alg for alg in self.options.algorithms if alg not in supported]
        if unknown or not self.options.algorithms:
            raise ConfigurationError(f"unsupported compact token algorithms: {unknown or 'none configured'}")
        hmac_only = all(alg in _HMAC_ALGORITHMS for alg in self.options.algorithms)
        if not hmac_only and any(alg in _HMAC_ALGORITHMS for alg in self.options.algorithms):
            # The certificate text must never double as an HMAC secret.
            raise ConfigurationError("HMAC and public key algorithms cannot be combined")
        if not cert:
            raise ConfigurationError("cert is required to validate compact tokens")
        self._secret = cert.encode()
        self._public_key: Any = None
        if not hmac_only:
            try:
                self._public_key = load_public_key(cert)
            except ValueError as exc:
                raise ConfigurationError("invalid_certificate") from exc

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "JwtValidator":
        return cls(config.cert, config.jwt)

    async def validate(self, token: str) -> Profile:
        return await asyncio.to_thread(self.validate_token, token)

    def validate_token(self, token: str, *, now: dt.datetime | None = None) -> Profile:
        parts = token.strip().split(".")
        if len(parts) != 3:
            raise AuthenticationError("invalid_token")
        header_segment, payload_segment, signature_segment = parts
        header = _decode_segment(header_segment)
        alg = header.get("alg")
        if not isinstance(alg, str) or alg not in self.options.algorithms:
            raise AuthenticationError("unsupported_algorithm")
        try:
            signature = b64url_decode(signature_segment)
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("invalid_token_signature") from exc
        self._verify_signature(alg, f"{header_segment}.{payload_segment}".encode(), signature)
        claims = _decode_segment(payload_segment)
        self._validate_claims(claims, now)
        return claims

    def _verify_signature(self, alg: str, signing_input: bytes, signature: bytes) -> None:
        digest_factory = _HMAC_ALGORITHMS.get(alg)
        if digest_factory is not None:
            expected = hmac.new(self._secret, signing_input, digest_factory).digest()
            if not hmac.compare_digest(signature, expected):
                raise AuthenticationError("invalid_token_signature")
            return
        key_types, hash_type = _ASYMMETRIC_ALGORITHMS[alg]
        if not isinstance(self._public_key, key_types):
            raise AuthenticationError("invalid_token_signature")
        try:
            verify_signature(self._public_key, signature, signing_input, hash_type() if hash_type else None)
        except InvalidSignature as exc:
            raise AuthenticationError("invalid_token_signature") from exc

    def _validate_claims(self, claims: Mapping[str, Any], now: dt.datetime | None) -> None:
        now_instant = now or dt.datetime.now(dt.timezone.utc)
        if now_instant.tzinfo is None:
            now_instant = now_instant.replace(tzinfo=dt.timezone.utc)
        skew = dt.timedelta(seconds=max(self.options.clock_skew_seconds, 0))
        expiration = _parse_epoch_claim(claims.get("exp"), "exp")
        if expiration is not None and not self.options.ignore_expiration and now_instant - skew >= expiration:
            raise AuthenticationError("token_expired")
        not_before = _parse_epoch_claim(claims.get("nbf"), "nbf")
        if not_before is not None and now_instant + skew < not_before:
            raise AuthenticationError("token_not_yet_valid")
        if self.options.issuer is not None and claims.get("iss") != self.options.issuer:
            raise AuthenticationError("invalid_issuer")
        if self.options.audience is not None:
            audience = claims.get("aud")
            if isinstance(audience, str):
                audiences = {audience}
            elif isinstance(audience, list):
                audiences = {value for value in audience if isinstance(value, str)}
            else:
                audiences = set()
            if self.options.audience not in audiences:
                raise AuthenticationError("invalid_audience")


def _decode_segment(segment: str) -> Mapping[str, Any]:
    try:
        decoded = json_decode(b64url_decode(segment))
    except (binascii.Error, ValueError, msgspec.DecodeError) as exc:
        raise AuthenticationError("invalid_token") from exc
    if not isinstance(decoded, Mapping):
        raise AuthenticationError("invalid_token")
    return decoded


def _parse_epoch_claim(value: Any, claim: str) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AuthenticationError(f"invalid_{claim}")
    try:
        return dt.datetime.fromtimestamp(value, tz=dt.timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise AuthenticationError(f"invalid_{claim}") from exc
