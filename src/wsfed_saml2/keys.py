"""Key material helpers shared by the default validators."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.hazmat.primitives.serialization import load_der_public_key, load_pem_public_key

__all__ = [
    "b64decode_lenient",
    "b64url_decode",
    "b64url_encode",
    "certificate_thumbprint",
    "ecdsa_der_signature",
    "load_public_key",
    "normalize_thumbprint",
    "verify_signature",
]


def load_public_key(material: str) -> Any:
    """Load a public key from a PEM/DER certificate or a PEM/DER public key.

    DER input is expected base64 encoded, which is how identity providers
    publish their signing certificates in metadata.
    """

    text = material.strip()
    if not text:
        raise ValueError("empty certificate")
    errors: list[Exception] = []
    if "-----BEGIN" not in text:
        try:
            der = b64decode_lenient(text)
        except (ValueError, binascii.Error) as exc:
            errors.append(exc)
        else:
            try:
                return x509.load_der_x509_certificate(der).public_key()
            except ValueError as exc:
                errors.append(exc)
            try:
                return load_der_public_key(der)
            except ValueError as exc:
                errors.append(exc)
    else:
        try:
            return x509.load_pem_x509_certificate(text.encode()).public_key()
        except ValueError as exc:
            errors.append(exc)
        try:
            return load_pem_public_key(text.encode())
        except ValueError as exc:
            errors.append(exc)
    raise ValueError("unsupported_certificate_format") from errors[-1]


def certificate_thumbprint(der: bytes) -> str:
    """Upper-case hex SHA-1 fingerprint of a DER certificate."""

    certificate = x509.load_der_x509_certificate(der)
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def normalize_thumbprint(value: str) -> str:
    return value.replace(":", "").replace(" ", "").upper()


def ecdsa_der_signature(public_key: ec.EllipticCurvePublicKey, signature: bytes) -> bytes:
    """Convert a raw ``r || s`` signature to DER; DER input passes through."""

    size = (public_key.curve.key_size + 7) // 8
    if len(signature) != size * 2:
        return signature
    r = int.from_bytes(signature[:size], "big")
    s = int.from_bytes(signature[size:], "big")
    return encode_dss_signature(r, s)


def b64decode_lenient(value: str) -> bytes:
    normalized = "".join(value.split())
    pad = "=" * ((4 - len(normalized) % 4) % 4)
    return base64.b64decode(normalized + pad, validate=True)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_decode(data: str) -> bytes:
    pad = "=" * ((4 - len(data) % 4) % 4)
    return base64.urlsafe_b64decode(data + pad)


def verify_signature(
    public_key: Any,
    signature: bytes,
    payload: bytes,
    hash_algorithm: hashes.HashAlgorithm | None,
) -> None:
    """Verify ``signature`` over ``payload``; raises ``InvalidSignature`` on mismatch.

    ``hash_algorithm`` is required for RSA (PKCS#1 v1.5) and ECDSA keys and
    ignored for EdDSA keys.
    """

    if isinstance(public_key, rsa.RSAPublicKey):
        if hash_algorithm is None:
            raise InvalidSignature("hash algorithm required")
        public_key.verify(signature, payload, padding.PKCS1v15(), hash_algorithm)
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        if hash_algorithm is None:
            raise InvalidSignature("hash algorithm required")
        public_key.verify(ecdsa_der_signature(public_key, signature), payload, ec.ECDSA(hash_algorithm))
    elif isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        public_key.verify(signature, payload)
    else:
        raise InvalidSignature("unsupported key type")
