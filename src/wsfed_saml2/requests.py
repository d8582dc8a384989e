"""Request primitives."""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping
from urllib.parse import parse_qsl

import msgspec

from .exceptions import HTTPError
from .http import Status
from .serialization import json_decode

_MAX_FORM_FIELDS = 1024
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_JSON_CONTENT_TYPE = "application/json"


class Request:
    """Read-only view of an incoming request.

    ``body`` is either supplied already parsed by the host, or parsed lazily from
    ``raw_body`` according to the ``content-type`` header (form-urlencoded or JSON).
    The method is kept exactly as received, so ``"post"`` is not a POST request.
    """

    __slots__ = (
        "_body",
        "_raw_body",
        "headers",
        "method",
        "path",
        "principal",
    )

    def __init__(
        self,
        *,
        method: str,
        path: str = "/",
        headers: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
        raw_body: bytes | None = None,
    ) -> None:
        if body is not None and raw_body is not None:
            raise ValueError("Request body and raw_body are mutually exclusive")
        self.method = method
        self.path = path
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self._body: Mapping[str, Any] | None | msgspec.UnsetType = msgspec.UNSET if body is None else body
        self._raw_body = raw_body
        self.principal: Any = None

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @property
    def body(self) -> Mapping[str, Any] | None:
        """Parsed request body, or ``None`` when the request carries none."""

        if self._body is msgspec.UNSET:
            self._body = self._parse_body()
        return self._body

    def _parse_body(self) -> Mapping[str, Any] | None:
        if not self._raw_body:
            return None
        content_type = (self.header("content-type") or "").split(";", 1)[0].strip().lower()
        if content_type == _JSON_CONTENT_TYPE:
            try:
                decoded = json_decode(self._raw_body)
            except msgspec.DecodeError as exc:
                raise HTTPError(Status.BAD_REQUEST, {"detail": "invalid_json_body"}) from exc
            return decoded if isinstance(decoded, Mapping) else None
        if content_type == _FORM_CONTENT_TYPE:
            return self._parse_form(self._raw_body)
        return None

    @staticmethod
    def _parse_form(raw: bytes) -> MutableMapping[str, str]:
        parsed: MutableMapping[str, str] = {}
        try:
            pairs = parse_qsl(
                raw.decode("utf-8", errors="replace"),
                keep_blank_values=True,
                max_num_fields=_MAX_FORM_FIELDS,
            )
        except ValueError as exc:
            raise HTTPError(Status.BAD_REQUEST, {"detail": "too_many_form_fields"}) from exc
        for key, value in pairs:
            parsed[key] = value
        return parsed

    def with_principal(self, principal: Any) -> "Request":
        self.principal = principal
        return self
