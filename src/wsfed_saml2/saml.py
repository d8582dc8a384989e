"""Default validators for signed SAML assertions and SAML protocol responses."""

from __future__ import annotations

import asyncio
import binascii
import datetime as dt
import hashlib
import hmac
import logging
from collections.abc import Callable, Iterable, MutableMapping
from dataclasses import dataclass
from typing import Any

import lxml.etree as LET
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from .config import StrategyConfig
from .exceptions import AuthenticationError, ConfigurationError
from .keys import b64decode_lenient, certificate_thumbprint, load_public_key, normalize_thumbprint, verify_signature
from .verification import Profile

__all__ = [
    "SAML1_ASSERTION_NS",
    "SAML2_ASSERTION_NS",
    "SAML2_PROTOCOL_NS",
    "SamlResponseValidator",
    "XmlAssertionValidator",
    "verify_enveloped_signature",
]

logger = logging.getLogger(__name__)

SAML1_ASSERTION_NS = "urn:oasis:names:tc:SAML:1.0:assertion"
SAML2_ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML2_PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
_STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"

_XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
_XML_EXC_C14N_NS = "http://www.w3.org/2001/10/xml-exc-c14n#"
_XML_ENVELOPED_SIGNATURE_URI = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
_SIGNATURE_TAG = f"{{{_XMLDSIG_NS}}}Signature"

_DIGEST_ALGORITHMS: dict[str, Callable[[bytes], Any]] = {
    "http://www.w3.org/2000/09/xmldsig#sha1": hashlib.sha1,
    "http://www.w3.org/2001/04/xmlenc#sha256": hashlib.sha256,
    "http://www.w3.org/2001/04/xmldsig-more#sha384": hashlib.sha384,
    "http://www.w3.org/2001/04/xmlenc#sha512": hashlib.sha512,
}


@dataclass(frozen=True)
class _CanonicalizationConfig:
    exclusive: bool
    with_comments: bool


_CANONICALIZATION_ALGORITHMS: dict[str, _CanonicalizationConfig] = {
    "http://www.w3.org/2001/10/xml-exc-c14n#": _CanonicalizationConfig(exclusive=True, with_comments=False),
    "http://www.w3.org/2001/10/xml-exc-c14n#WithComments": _CanonicalizationConfig(exclusive=True, with_comments=True),
    "http://www.w3.org/TR/2001/REC-xml-c14n-20010315": _CanonicalizationConfig(exclusive=False, with_comments=False),
    "http://www.w3.org/TR/2001/REC-xml-c14n-20010315#WithComments": _CanonicalizationConfig(
        exclusive=False,
        with_comments=True,
    ),
}

# Signature method URI -> accepted key types and the hash fed to the verifier.
_SIGNATURE_ALGORITHMS: dict[str, tuple[tuple[type[Any], ...], Callable[[], hashes.HashAlgorithm] | None]] = {
    "http://www.w3.org/2000/09/xmldsig#rsa-sha1": ((rsa.RSAPublicKey,), hashes.SHA1),
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256": ((rsa.RSAPublicKey,), hashes.SHA256),
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384": ((rsa.RSAPublicKey,), hashes.SHA384),
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512": ((rsa.RSAPublicKey,), hashes.SHA512),
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256": ((ec.EllipticCurvePublicKey,), hashes.SHA256),
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha384": ((ec.EllipticCurvePublicKey,), hashes.SHA384),
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha512": ((ec.EllipticCurvePublicKey,), hashes.SHA512),
    "http://www.w3.org/2001/04/xmldsig-more#ed25519": ((ed25519.Ed25519PublicKey,), None),
    "http://www.w3.org/2001/04/xmldsig-more#ed448": ((ed448.Ed448PublicKey,), None),
}

KeyResolver = Callable[[LET._Element], Any]


def verify_enveloped_signature(element: LET._Element, resolve_key: KeyResolver) -> None:
    """Verify the enveloped signature that is a direct child of ``element``.

    The single ``Reference`` must point at ``element`` itself. ``resolve_key``
    receives the ``ds:Signature`` node and returns the public key to verify with.
    """

    signature = element.find(_SIGNATURE_TAG)
    if signature is None:
        raise AuthenticationError("missing_signature")
    signed_info = signature.find(f"{{{_XMLDSIG_NS}}}SignedInfo")
    if signed_info is None:
        raise AuthenticationError("invalid_signature")
    signature_value = signature.findtext(f"{{{_XMLDSIG_NS}}}SignatureValue")
    if not signature_value or not signature_value.strip():
        raise AuthenticationError("missing_signature")
    try:
        signature_bytes = b64decode_lenient(signature_value)
    except (binascii.Error, ValueError) as exc:
        raise AuthenticationError("invalid_signature") from exc
    references = signed_info.findall(f"{{{_XMLDSIG_NS}}}Reference")
    if len(references) != 1:
        raise AuthenticationError("invalid_signature")
    _verify_reference_digest(element, references[0])
    payload = _canonicalize_signed_info(signed_info)
    method = signed_info.find(f"{{{_XMLDSIG_NS}}}SignatureMethod")
    algorithm = method.get("Algorithm") if method is not None else None
    entry = _SIGNATURE_ALGORITHMS.get(algorithm or "")
    if entry is None:
        raise AuthenticationError("unsupported_signature_algorithm")
    key_types, hash_factory = entry
    public_key = resolve_key(signature)
    if not isinstance(public_key, key_types):
        raise AuthenticationError("invalid_signature")
    try:
        verify_signature(public_key, signature_bytes, payload, hash_factory() if hash_factory else None)
    except InvalidSignature as exc:
        raise AuthenticationError("invalid_signature") from exc


def _element_ids(element: LET._Element) -> set[str]:
    return {value for name in ("ID", "AssertionID", "Id", "id") if (value := element.get(name))}


def _detach(element: LET._Element) -> LET._Element:
    return LET.fromstring(LET.tostring(element, with_tail=False))


def _verify_reference_digest(element: LET._Element, reference: LET._Element) -> None:
    uri = reference.get("URI") or ""
    if uri and (not uri.startswith("#") or uri[1:] not in _element_ids(element)):
        raise AuthenticationError("invalid_signature_reference")
    data: bytes | LET._Element = _detach(element)
    transforms = reference.findall(f"{{{_XMLDSIG_NS}}}Transforms/{{{_XMLDSIG_NS}}}Transform")
    for transform in transforms:
        algorithm = transform.get("Algorithm") or ""
        if isinstance(data, bytes):
            data = LET.fromstring(data)
        if algorithm == _XML_ENVELOPED_SIGNATURE_URI:
            for node in data.findall(_SIGNATURE_TAG):
                data.remove(node)
        elif algorithm in _CANONICALIZATION_ALGORITHMS:
            data = _canonicalize(data, algorithm, _inclusive_namespace_prefixes(transform))
        else:
            raise AuthenticationError("unsupported_transform")
    if isinstance(data, LET._Element):
        data = LET.tostring(data, method="c14n", exclusive=False, with_comments=False)
    digest_method = reference.find(f"{{{_XMLDSIG_NS}}}DigestMethod")
    digest_value = reference.findtext(f"{{{_XMLDSIG_NS}}}DigestValue")
    if digest_method is None or not digest_value:
        raise AuthenticationError("invalid_signature")
    factory = _DIGEST_ALGORITHMS.get(digest_method.get("Algorithm") or "")
    if factory is None:
        raise AuthenticationError("unsupported_digest_algorithm")
    try:
        expected = b64decode_lenient(digest_value)
    except (binascii.Error, ValueError) as exc:
        raise AuthenticationError("invalid_signature") from exc
    if not hmac.compare_digest(factory(data).digest(), expected):
        raise AuthenticationError("invalid_digest")


def _canonicalize_signed_info(signed_info: LET._Element) -> bytes:
    method = signed_info.find(f"{{{_XMLDSIG_NS}}}CanonicalizationMethod")
    algorithm = method.get("Algorithm") if method is not None else None
    if method is None or algorithm not in _CANONICALIZATION_ALGORITHMS:
        raise AuthenticationError("invalid_signature")
    return _canonicalize(signed_info, algorithm, _inclusive_namespace_prefixes(method))


def _canonicalize(element: LET._Element, algorithm: str, prefixes: tuple[str, ...]) -> bytes:
    config = _CANONICALIZATION_ALGORITHMS[algorithm]
    return LET.tostring(
        element,
        method="c14n",
        exclusive=config.exclusive,
        with_comments=config.with_comments,
        inclusive_ns_prefixes=list(prefixes) if prefixes and config.exclusive else None,
    )


def _inclusive_namespace_prefixes(element: LET._Element) -> tuple[str, ...]:
    node = element.find(f"{{{_XML_EXC_C14N_NS}}}InclusiveNamespaces")
    if node is None:
        return ()
    return tuple((node.get("PrefixList") or "").split())


def _parse_instant(value: str) -> dt.datetime:
    try:
        instant = dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise AuthenticationError("invalid_timestamp") from exc
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt.timezone.utc)
    return instant


def _ensure_utc(moment: dt.datetime | None) -> dt.datetime:
    if moment is None:
        return dt.datetime.now(dt.timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=dt.timezone.utc)
    return moment.astimezone(dt.timezone.utc)


class XmlAssertionValidator:
    """Validate signed SAML 1.1 (WS-Federation) and SAML 2.0 assertions.

    The signing key is the configured ``cert``; without one, the certificate
    embedded in the signature is trusted when its SHA-1 thumbprint is listed in
    ``thumbprints``.
    """

    def __init__(
        self,
        *,
        cert: str | None = None,
        thumbprints: Iterable[str] = (),
        realm: str | None = None,
        check_expiration: bool = True,
        check_audience: bool = True,
        clock_skew_seconds: int = 0,
    ) -> None:
        self._thumbprints = frozenset(normalize_thumbprint(value) for value in thumbprints)
        if not cert and not self._thumbprints:
            raise ConfigurationError("cert or thumbprints is required to validate assertions")
        self._public_key: Any = None
        if cert:
            try:
                self._public_key = load_public_key(cert)
            except ValueError as exc:
                raise ConfigurationError("invalid_certificate") from exc
        self.realm = realm
        self.check_expiration = check_expiration
        self.check_audience = check_audience
        self.clock_skew = dt.timedelta(seconds=max(clock_skew_seconds, 0))

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "XmlAssertionValidator":
        return cls(
            cert=config.cert,
            thumbprints=config.thumbprints,
            realm=config.realm,
            check_expiration=config.check_expiration,
            check_audience=config.check_audience,
            clock_skew_seconds=config.clock_skew_seconds,
        )

    async def validate(self, assertion: LET._Element) -> Profile:
        return await asyncio.to_thread(self.validate_assertion, assertion)

    def validate_assertion(
        self,
        assertion: LET._Element,
        *,
        now: dt.datetime | None = None,
        require_signature: bool = True,
    ) -> Profile:
        """Check signature, conditions and audience, then build the claims profile.

        ``require_signature=False`` is only for assertions covered by a verified
        signature on their enclosing SAML response.
        """

        if LET.QName(assertion).localname != "Assertion":
            found = assertion.find(f".//{{{SAML2_ASSERTION_NS}}}Assertion")
            if found is None:
                found = assertion.find(f".//{{{SAML1_ASSERTION_NS}}}Assertion")
            if found is None:
                raise AuthenticationError("missing_assertion")
            assertion = found
        namespace = LET.QName(assertion).namespace
        if namespace not in (SAML1_ASSERTION_NS, SAML2_ASSERTION_NS):
            raise AuthenticationError("unsupported_assertion_version")
        if require_signature or assertion.find(_SIGNATURE_TAG) is not None:
            self.verify_signature(assertion)
        self._check_conditions(assertion, namespace, _ensure_utc(now))
        if namespace == SAML2_ASSERTION_NS:
            return self._saml2_profile(assertion)
        return self._saml1_profile(assertion)

    def verify_signature(self, element: LET._Element) -> None:
        verify_enveloped_signature(element, self._resolve_key)

    def _resolve_key(self, signature: LET._Element) -> Any:
        if self._public_key is not None:
            return self._public_key
        embedded = signature.findtext(f".//{{{_XMLDSIG_NS}}}X509Certificate")
        if not embedded or not embedded.strip():
            raise AuthenticationError("missing_certificate")
        try:
            der = b64decode_lenient(embedded)
            thumbprint = certificate_thumbprint(der)
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("invalid_certificate") from exc
        if thumbprint not in self._thumbprints:
            raise AuthenticationError("untrusted_certificate", thumbprint)
        return load_public_key(embedded)

    def _check_conditions(self, assertion: LET._Element, ns: str, now: dt.datetime) -> None:
        conditions = assertion.find(f"{{{ns}}}Conditions")
        if self.check_expiration and conditions is not None:
            not_before = conditions.get("NotBefore")
            if not_before and now + self.clock_skew < _parse_instant(not_before):
                raise AuthenticationError("assertion_not_yet_valid")
            not_on_or_after = conditions.get("NotOnOrAfter")
            if not_on_or_after and now - self.clock_skew >= _parse_instant(not_on_or_after):
                raise AuthenticationError("assertion_expired")
        if self.check_expiration and ns == SAML2_ASSERTION_NS:
            for data in assertion.iterfind(f"{{{ns}}}Subject/{{{ns}}}SubjectConfirmation/{{{ns}}}SubjectConfirmationData"):
                data_not_on_or_after = data.get("NotOnOrAfter")
                if data_not_on_or_after and now - self.clock_skew >= _parse_instant(data_not_on_or_after):
                    raise AuthenticationError("subject_confirmation_expired")
        if self.check_audience and self.realm:
            audiences = {
                node.text.strip()
                for node in assertion.iterfind(f"{{{ns}}}Conditions//{{{ns}}}Audience")
                if node.text and node.text.strip()
            }
            if self.realm not in audiences:
                raise AuthenticationError("invalid_audience")

    def _saml2_profile(self, assertion: LET._Element) -> Profile:
        ns = SAML2_ASSERTION_NS
        name_id = assertion.find(f"{{{ns}}}Subject/{{{ns}}}NameID")
        if name_id is None or not (name_id.text or "").strip():
            raise AuthenticationError("missing_subject")
        profile: MutableMapping[str, Any] = {
            "issuer": (assertion.findtext(f"{{{ns}}}Issuer") or "").strip() or None,
            "subject": name_id.text.strip(),
            "name_identifier_format": name_id.get("Format"),
        }
        statement = assertion.find(f"{{{ns}}}AuthnStatement")
        if statement is not None:
            if statement.get("SessionIndex"):
                profile["session_index"] = statement.get("SessionIndex")
            method = statement.findtext(f"{{{ns}}}AuthnContext/{{{ns}}}AuthnContextClassRef")
            if method:
                profile["authentication_method"] = method.strip()
        for attribute in assertion.iterfind(f"{{{ns}}}AttributeStatement/{{{ns}}}Attribute"):
            _add_attribute(profile, attribute.get("Name"), attribute, ns)
        return profile

    def _saml1_profile(self, assertion: LET._Element) -> Profile:
        ns = SAML1_ASSERTION_NS
        name_id = assertion.find(f".//{{{ns}}}Subject/{{{ns}}}NameIdentifier")
        if name_id is None or not (name_id.text or "").strip():
            raise AuthenticationError("missing_subject")
        profile: MutableMapping[str, Any] = {
            "issuer": assertion.get("Issuer"),
            "subject": name_id.text.strip(),
            "name_identifier_format": name_id.get("Format"),
        }
        statement = assertion.find(f"{{{ns}}}AuthenticationStatement")
        if statement is not None and statement.get("AuthenticationMethod"):
            profile["authentication_method"] = statement.get("AuthenticationMethod")
        for attribute in assertion.iterfind(f"{{{ns}}}AttributeStatement/{{{ns}}}Attribute"):
            name = attribute.get("AttributeName")
            namespace = attribute.get("AttributeNamespace")
            if name and namespace:
                name = f"{namespace.rstrip('/')}/{name}"
            _add_attribute(profile, name, attribute, ns)
        return profile


def _add_attribute(profile: MutableMapping[str, Any], name: str | None, attribute: LET._Element, ns: str) -> None:
    if not name:
        return
    values = [(node.text or "").strip() for node in attribute.iterfind(f"{{{ns}}}AttributeValue")]
    values = [value for value in values if value]
    if not values:
        return
    profile.setdefault(name, values[0] if len(values) == 1 else values)


class SamlResponseValidator:
    """Validate a SAML 2.0 ``samlp:Response`` and the assertion it carries."""

    def __init__(self, assertion_validator: XmlAssertionValidator) -> None:
        self._assertions = assertion_validator

    async def validate_response(self, response: LET._Element) -> Profile:
        return await asyncio.to_thread(self.validate_response_document, response)

    def validate_response_document(self, response: LET._Element, *, now: dt.datetime | None = None) -> Profile:
        if response.tag != f"{{{SAML2_PROTOCOL_NS}}}Response":
            raise AuthenticationError("invalid_response")
        status_code = response.find(f"{{{SAML2_PROTOCOL_NS}}}Status/{{{SAML2_PROTOCOL_NS}}}StatusCode")
        status_value = status_code.get("Value") if status_code is not None else None
        if status_value != _STATUS_SUCCESS:
            message = response.findtext(f"{{{SAML2_PROTOCOL_NS}}}Status/{{{SAML2_PROTOCOL_NS}}}StatusMessage")
            logger.info("Identity provider returned status %s", status_value)
            raise AuthenticationError("unsuccessful_status", (message or status_value or "missing").strip())
        if response.find(f"{{{SAML2_ASSERTION_NS}}}EncryptedAssertion") is not None:
            raise AuthenticationError("encrypted_assertion_unsupported")
        assertions = response.findall(f"{{{SAML2_ASSERTION_NS}}}Assertion")
        if len(assertions) != 1:
            raise AuthenticationError("missing_assertion" if not assertions else "multiple_assertions")
        response_signed = response.find(_SIGNATURE_TAG) is not None
        if response_signed:
            self._assertions.verify_signature(response)
        return self._assertions.validate_assertion(
            assertions[0],
            now=now,
            require_signature=not response_signed,
        )
