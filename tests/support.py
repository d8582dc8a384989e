"""Test support utilities: identity provider key material, signed documents and fakes."""

from __future__ import annotations

import base64
import datetime as dt
import hashlib
from dataclasses import dataclass, field
from typing import Any, Mapping

import lxml.etree as LET
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.x509.oid import NameOID

from wsfed_saml2.config import AuthorizationParams
from wsfed_saml2.requests import Request
from wsfed_saml2.verification import Profile

SigningKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey | ed448.Ed448PrivateKey

REALM = "urn:example:app"
IDP_URL = "https://idp.example.com/sso"
REPLY_URL = "https://app.example.com/callback"

SAML2_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML1_NS = "urn:oasis:names:tc:SAML:1.0:assertion"
SAMLP_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
WSTRUST_NS = "http://schemas.xmlsoap.org/ws/2005/02/trust"

_DS_NS = "http://www.w3.org/2000/09/xmldsig#"
_EXC_C14N = "http://www.w3.org/2001/10/xml-exc-c14n#"
_ENVELOPED_SIG = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
_DIGEST_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
_ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
_ED25519 = "http://www.w3.org/2001/04/xmldsig-more#ed25519"
_ED448 = "http://www.w3.org/2001/04/xmldsig-more#ed448"


def saml_instant(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def b64(text: str | bytes) -> str:
    data = text.encode() if isinstance(text, str) else text
    return base64.b64encode(data).decode()


def generate_signing_material(
    key: SigningKey | None = None,
    *,
    common_name: str = "Test IdP",
) -> tuple[SigningKey, str]:
    """Return a private key and a matching self-signed PEM certificate."""

    private_key = key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = dt.datetime.now(dt.timezone.utc)
    algorithm = None if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)) else hashes.SHA256()
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(days=1))
        .not_valid_after(now + dt.timedelta(days=1))
        .sign(private_key, algorithm=algorithm)
    )
    return private_key, certificate.public_bytes(serialization.Encoding.PEM).decode()


def certificate_body(pem: str) -> str:
    lines = [line.strip() for line in pem.splitlines() if "BEGIN" not in line and "END" not in line]
    return "".join(lines)


def certificate_thumbprint(pem: str) -> str:
    certificate = x509.load_pem_x509_certificate(pem.encode())
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def saml2_assertion(
    *,
    subject: str = "user@example.com",
    audience: str = REALM,
    assertion_id: str = "_assertion1",
    not_before: dt.datetime | None = None,
    not_on_or_after: dt.datetime | None = None,
    attributes: Mapping[str, str | list[str]] | None = None,
    issuer: str = "https://idp.example.com",
) -> LET._Element:
    now = dt.datetime.now(dt.timezone.utc)
    not_before = not_before or now - dt.timedelta(minutes=5)
    not_on_or_after = not_on_or_after or now + dt.timedelta(minutes=5)
    rendered_attributes = "".join(
        f"<saml:Attribute Name='{name}'>"
        + "".join(
            f"<saml:AttributeValue>{value}</saml:AttributeValue>"
            for value in (values if isinstance(values, list) else [values])
        )
        + "</saml:Attribute>"
        for name, values in (attributes or {}).items()
    )
    template = (
        f"<saml:Assertion xmlns:saml='{SAML2_NS}' Version='2.0' ID='{assertion_id}' "
        f"IssueInstant='{saml_instant(now)}'>"
        f"<saml:Issuer>{issuer}</saml:Issuer>"
        "<saml:Subject>"
        f"<saml:NameID Format='urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress'>{subject}</saml:NameID>"
        "</saml:Subject>"
        f"<saml:Conditions NotBefore='{saml_instant(not_before)}' NotOnOrAfter='{saml_instant(not_on_or_after)}'>"
        f"<saml:AudienceRestriction><saml:Audience>{audience}</saml:Audience></saml:AudienceRestriction>"
        "</saml:Conditions>"
        "<saml:AuthnStatement SessionIndex='_session1'>"
        "<saml:AuthnContext><saml:AuthnContextClassRef>"
        "urn:oasis:names:tc:SAML:2.0:ac:classes:Password"
        "</saml:AuthnContextClassRef></saml:AuthnContext>"
        "</saml:AuthnStatement>"
        f"<saml:AttributeStatement>{rendered_attributes}</saml:AttributeStatement>"
        "</saml:Assertion>"
    )
    return LET.fromstring(template)


def saml1_assertion(
    *,
    subject: str = "user@example.com",
    audience: str = REALM,
    assertion_id: str = "_saml11",
) -> LET._Element:
    now = dt.datetime.now(dt.timezone.utc)
    template = (
        f"<saml:Assertion xmlns:saml='{SAML1_NS}' MajorVersion='1' MinorVersion='1' "
        f"AssertionID='{assertion_id}' Issuer='https://idp.example.com' IssueInstant='{saml_instant(now)}'>"
        f"<saml:Conditions NotBefore='{saml_instant(now - dt.timedelta(minutes=5))}' "
        f"NotOnOrAfter='{saml_instant(now + dt.timedelta(minutes=5))}'>"
        f"<saml:AudienceRestrictionCondition><saml:Audience>{audience}</saml:Audience>"
        "</saml:AudienceRestrictionCondition>"
        "</saml:Conditions>"
        "<saml:AttributeStatement>"
        f"<saml:Subject><saml:NameIdentifier>{subject}</saml:NameIdentifier></saml:Subject>"
        "<saml:Attribute AttributeName='emailaddress' "
        "AttributeNamespace='http://schemas.xmlsoap.org/ws/2005/05/identity/claims'>"
        f"<saml:AttributeValue>{subject}</saml:AttributeValue>"
        "</saml:Attribute>"
        "</saml:AttributeStatement>"
        "<saml:AuthenticationStatement AuthenticationMethod='urn:oasis:names:tc:SAML:1.0:am:password'>"
        f"<saml:Subject><saml:NameIdentifier>{subject}</saml:NameIdentifier></saml:Subject>"
        "</saml:AuthenticationStatement>"
        "</saml:Assertion>"
    )
    return LET.fromstring(template)


def sign_element(
    element: LET._Element,
    key: SigningKey,
    *,
    reference_id: str,
    certificate: str | None = None,
) -> LET._Element:
    """Insert an enveloped exclusive-c14n signature as the first child of ``element``."""

    digest_target = LET.fromstring(LET.tostring(element))
    for node in digest_target.findall(f"{{{_DS_NS}}}Signature"):
        digest_target.remove(node)
    digest_bytes = LET.tostring(digest_target, method="c14n", exclusive=True, with_comments=False)
    digest_value = base64.b64encode(hashlib.sha256(digest_bytes).digest()).decode()

    signature = LET.Element(f"{{{_DS_NS}}}Signature", nsmap={"ds": _DS_NS})
    signed_info = LET.SubElement(signature, f"{{{_DS_NS}}}SignedInfo")
    LET.SubElement(signed_info, f"{{{_DS_NS}}}CanonicalizationMethod", Algorithm=_EXC_C14N)
    LET.SubElement(signed_info, f"{{{_DS_NS}}}SignatureMethod", Algorithm=_signature_algorithm_uri(key))
    reference = LET.SubElement(signed_info, f"{{{_DS_NS}}}Reference", URI=f"#{reference_id}")
    transforms = LET.SubElement(reference, f"{{{_DS_NS}}}Transforms")
    LET.SubElement(transforms, f"{{{_DS_NS}}}Transform", Algorithm=_ENVELOPED_SIG)
    LET.SubElement(transforms, f"{{{_DS_NS}}}Transform", Algorithm=_EXC_C14N)
    LET.SubElement(reference, f"{{{_DS_NS}}}DigestMethod", Algorithm=_DIGEST_SHA256)
    LET.SubElement(reference, f"{{{_DS_NS}}}DigestValue").text = digest_value

    signed_info_bytes = LET.tostring(signed_info, method="c14n", exclusive=True, with_comments=False)
    LET.SubElement(signature, f"{{{_DS_NS}}}SignatureValue").text = base64.b64encode(
        _sign_payload(key, signed_info_bytes)
    ).decode()
    if certificate:
        key_info = LET.SubElement(signature, f"{{{_DS_NS}}}KeyInfo")
        x509_data = LET.SubElement(key_info, f"{{{_DS_NS}}}X509Data")
        LET.SubElement(x509_data, f"{{{_DS_NS}}}X509Certificate").text = certificate_body(certificate)

    element.insert(0, signature)
    return element


def signed_assertion_xml(key: SigningKey, *, certificate: str | None = None, **kwargs: Any) -> str:
    assertion = saml2_assertion(**kwargs)
    sign_element(assertion, key, reference_id=assertion.get("ID"), certificate=certificate)
    return LET.tostring(assertion, encoding="unicode")


def wsfed_wresult(assertion_xml: str) -> str:
    return (
        f"<t:RequestSecurityTokenResponse xmlns:t='{WSTRUST_NS}'>"
        "<t:Lifetime/>"
        f"<t:RequestedSecurityToken>{assertion_xml}</t:RequestedSecurityToken>"
        "</t:RequestSecurityTokenResponse>"
    )


def saml_response_xml(
    assertion: LET._Element | None,
    *,
    status: str = "urn:oasis:names:tc:SAML:2.0:status:Success",
    status_message: str | None = None,
    sign_with: SigningKey | None = None,
    response_id: str = "_response1",
) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    response = LET.Element(
        f"{{{SAMLP_NS}}}Response",
        nsmap={"samlp": SAMLP_NS, "saml": SAML2_NS},
        ID=response_id,
        Version="2.0",
        IssueInstant=saml_instant(now),
    )
    LET.SubElement(response, f"{{{SAML2_NS}}}Issuer").text = "https://idp.example.com"
    status_node = LET.SubElement(response, f"{{{SAMLP_NS}}}Status")
    LET.SubElement(status_node, f"{{{SAMLP_NS}}}StatusCode", Value=status)
    if status_message:
        LET.SubElement(status_node, f"{{{SAMLP_NS}}}StatusMessage").text = status_message
    if assertion is not None:
        response.append(assertion)
    if sign_with is not None:
        sign_element(response, sign_with, reference_id=response_id)
    return LET.tostring(response, encoding="unicode")


def _sign_payload(key: SigningKey, payload: bytes) -> bytes:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return key.sign(payload, ec.ECDSA(hashes.SHA256()))
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return key.sign(payload)
    raise AssertionError(f"Unsupported signing key type: {type(key)!r}")


def _signature_algorithm_uri(key: SigningKey) -> str:
    if isinstance(key, rsa.RSAPrivateKey):
        return _RSA_SHA256
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return _ECDSA_SHA256
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return _ED25519
    if isinstance(key, ed448.Ed448PrivateKey):
        return _ED448
    raise AssertionError(f"Unsupported signing key type: {type(key)!r}")


def form_request(fields: Mapping[str, str], *, method: str = "POST") -> Request:
    return Request(
        method=method,
        path="/callback",
        headers={"content-type": "application/x-www-form-urlencoded"},
        body=dict(fields),
    )


@dataclass
class FakeValidator:
    """Records every credential and answers with a fixed profile or exception."""

    profile: Profile | None = field(default_factory=lambda: {"subject": "user@example.com"})
    error: Exception | None = None
    calls: list[Any] = field(default_factory=list)

    async def validate(self, credential: Any) -> Profile | None:
        self.calls.append(credential)
        if self.error is not None:
            raise self.error
        return self.profile

    async def validate_response(self, credential: Any) -> Profile | None:
        return await self.validate(credential)


@dataclass
class FakeWsFedInitiator:
    url: str = "https://idp.example.com/sso?wa=wsignin1.0"
    calls: list[AuthorizationParams] = field(default_factory=list)

    def get_request_security_token_url(self, params: AuthorizationParams) -> str:
        self.calls.append(params)
        return self.url


@dataclass
class FakeSamlpInitiator:
    url: str = "https://idp.example.com/saml?SAMLRequest=abc"
    form: str = "<html><form></form></html>"
    error: Exception | None = None
    calls: list[tuple[str, AuthorizationParams]] = field(default_factory=list)

    async def get_request_url(self, params: AuthorizationParams) -> str:
        self.calls.append(("url", params))
        if self.error is not None:
            raise self.error
        return self.url

    async def get_request_form(self, params: AuthorizationParams) -> str:
        self.calls.append(("form", params))
        if self.error is not None:
            raise self.error
        return self.form


class RecordingVerifier:
    """Verify function that records profiles and answers with a fixed triple."""

    def __init__(self, result: tuple[Any, Any, Any] | None = None) -> None:
        self.result = result if result is not None else (None, {"id": "user-1"}, None)
        self.profiles: list[Profile] = []

    async def __call__(self, profile: Profile) -> tuple[Any, Any, Any]:
        self.profiles.append(profile)
        return self.result
