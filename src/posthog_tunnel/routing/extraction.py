"""Project identifier extraction from PostHog ingestion requests.

Priority (first hit wins):
  1. Query param ``token``, then ``_``.
  2. Path segment ``/array/{identifier}/config``.
  3. JSON body field ``token``, then ``api_key`` (POST + JSON content type).
  4. Nothing: anonymous traffic, allowed by default.

Field names (``token``, ``api_key``, ``_``) are PostHog's wire format.

URL extraction runs first and never touches the body. Only when it finds
nothing does the proxy buffer the body and call ``extract_from_body``; the
same buffered bytes are then forwarded upstream.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Union
from urllib.parse import parse_qsl

BODY_METHOD = "POST"

IDENTIFIER_QUERY_PARAMS: tuple[str, ...] = ("token", "_")
IDENTIFIER_BODY_FIELDS: tuple[str, ...] = ("token", "api_key")

_ARRAY_CONFIG_RE = re.compile(r"/array/([^/]+)/config")


# ── Body extraction outcomes ───────────────────────────────────────


@dataclass(frozen=True, slots=True)
class JsonWithField:
    """Body parsed as JSON and carried an identifier field."""

    identifier: str
    field: str


@dataclass(frozen=True, slots=True)
class JsonWithoutField:
    """Body parsed as JSON but had no usable identifier field."""


@dataclass(frozen=True, slots=True)
class NonJson:
    """Body was not JSON (content type, or it failed to parse)."""


@dataclass(frozen=True, slots=True)
class Absent:
    """Request carried no body to inspect."""


BodyExtraction = Union[JsonWithField, JsonWithoutField, NonJson, Absent]


# ── URL phase ──────────────────────────────────────────────────────


def first_query_values(query_string: str) -> dict[str, str]:
    """Decode a query string keeping the first value of each repeated key.

    ``?token=A&token=B`` yields ``A``, so a duplicated key cannot hide a
    listed token behind an unlisted one.
    """
    values: dict[str, str] = {}
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        values.setdefault(name, value)
    return values


def extract_from_url(query_params: Mapping[str, str], path: str) -> str | None:
    """Return the identifier carried in the query string or path, if any.

    ``path`` is the percent-decoded path as ASGI servers deliver it, so an
    encoded slash can never end up inside the captured segment.
    """
    for name in IDENTIFIER_QUERY_PARAMS:
        value = query_params.get(name)
        if value:
            return value

    match = _ARRAY_CONFIG_RE.search(path)
    if match:
        return match.group(1)

    return None


# ── Body phase ─────────────────────────────────────────────────────


def is_json_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def extract_from_body(
    method: str,
    content_type: str | None,
    body: bytes | None,
) -> BodyExtraction:
    """Classify a buffered body and pull an identifier out of it.

    Malformed JSON is reported as ``NonJson``, never raised.
    """
    if method.upper() != BODY_METHOD or not body:
        return Absent()
    if not is_json_content_type(content_type):
        return NonJson()

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return NonJson()

    if not isinstance(payload, dict):
        return JsonWithoutField()

    for name in IDENTIFIER_BODY_FIELDS:
        value = payload.get(name)
        if value is None:
            continue
        # First present field decides; a non-string token does not fall
        # through to api_key.
        if isinstance(value, str) and value:
            return JsonWithField(identifier=value, field=name)
        break

    return JsonWithoutField()


def identifier_from_body(outcome: BodyExtraction) -> str | None:
    if isinstance(outcome, JsonWithField):
        return outcome.identifier
    return None


def extract_identifier(
    query_params: Mapping[str, str],
    path: str,
    method: str,
    content_type: str | None = None,
    body: bytes | None = None,
) -> str | None:
    """Full priority protocol over an already-buffered request."""
    identifier = extract_from_url(query_params, path)
    if identifier is not None:
        return identifier
    return identifier_from_body(extract_from_body(method, content_type, body))
