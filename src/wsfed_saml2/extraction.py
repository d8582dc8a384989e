"""Pull raw credential material out of inbound requests."""

from __future__ import annotations

import binascii
import logging

import lxml.etree as LET

from .exceptions import MalformedCredentialError
from .keys import b64decode_lenient
from .requests import Request

__all__ = [
    "BEARER_PREFIX",
    "bearer_token",
    "decode_bearer_assertion",
    "decode_saml_response",
    "extract_requested_security_token",
    "parse_xml",
    "posted_field",
]

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

_REQUESTED_SECURITY_TOKEN_XPATH = "//*[local-name()='RequestedSecurityToken']"


def _parser() -> LET.XMLParser:
    return LET.XMLParser(resolve_entities=False, no_network=True, huge_tree=False, remove_blank_text=False)


def parse_xml(text: str | bytes) -> LET._Element:
    """Parse ``text`` with entity expansion and network access disabled."""

    payload = text.encode("utf-8") if isinstance(text, str) else text
    try:
        return LET.fromstring(payload, parser=_parser())
    except (LET.XMLSyntaxError, ValueError) as exc:
        raise MalformedCredentialError("token should be a valid xml") from exc


def bearer_token(request: Request) -> str | None:
    """Return the remainder of an ``Authorization: Bearer`` header, if present."""

    header = request.header("authorization")
    if header and header.startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX) :]
    return None


def posted_field(request: Request, name: str) -> str | None:
    """Return body field ``name`` of a ``POST`` request when it is a non-empty string."""

    if request.method != "POST":
        return None
    body = request.body
    if not body:
        return None
    value = body.get(name)
    if not value or not isinstance(value, str):
        return None
    return value


def _b64decode_text(value: str) -> str:
    return b64decode_lenient(value).decode("utf-8")


def decode_bearer_assertion(raw_token: str) -> LET._Element:
    """Decode a base64 bearer token to UTF-8 text and parse it as XML."""

    try:
        xml_text = _b64decode_text(raw_token)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise MalformedCredentialError("bearer token should be base64 encoded xml") from exc
    if "<" not in xml_text:
        raise MalformedCredentialError("bearer token should be base64 encoded xml")
    return parse_xml(xml_text)


def decode_saml_response(value: str) -> str:
    """Decode a POST-binding ``SAMLResponse`` field to XML text."""

    try:
        return _b64decode_text(value)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise MalformedCredentialError("SAMLResponse should be a valid xml") from exc


def extract_requested_security_token(wresult: str) -> LET._Element | None:
    """Return the token held by the ``RequestedSecurityToken`` element of ``wresult``.

    The token is detached into its own document. ``None`` means the element is
    missing, empty, or ``wresult`` could not be parsed at all.
    """

    try:
        document = parse_xml(wresult)
    except MalformedCredentialError:
        logger.debug("wresult is not parseable xml")
        return None
    for container in document.xpath(_REQUESTED_SECURITY_TOKEN_XPATH):
        for child in container:
            if isinstance(child.tag, str):
                return LET.fromstring(LET.tostring(child, with_tail=False), parser=_parser())
    return None
