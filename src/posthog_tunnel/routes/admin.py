"""Admin endpoints for mutating the blocklist at runtime.

Every route requires ``Authorization: Bearer <ADMIN_API_KEY>``. Mutations go
through ``BlocklistStore`` which persists the document and swaps in a fresh
index before returning, so the response is only sent once the next proxied
request is guaranteed to see the change.

Response contracts:
  GET    /admin/identifiers                                  → 200 [entry, ...]
  POST   /admin/identifiers {identifier, label}              → 201 entry
  DELETE /admin/identifiers/{identifier}                     → 200 {ok: true}
  GET    /admin/identifiers/{identifier}/blocked-domains     → 200 [domain, ...]
  POST   /admin/identifiers/{identifier}/blocked-domains     → 200 entry
  DELETE /admin/identifiers/{identifier}/blocked-domains/{d} → 200 {ok: true}
  GET    /admin/domains                                      → 200 [domain, ...]
  POST   /admin/domains {domain}                             → 201 {ok: true}
  DELETE /admin/domains/{domain}                             → 200 {ok: true}
"""

from __future__ import annotations

import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import AliasChoices, BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..blocklist.store import BlocklistStore
from ..errors import AuthError, ValidationError
from ..routing.domain_check import normalize_domain

BEARER_PREFIX = "Bearer "


# ── Request bodies ────────────────────────────────────────────────────


class IdentifierRequest(BaseModel):
    # "apiKey" is accepted from older admin clients.
    identifier: str | None = Field(
        default=None, validation_alias=AliasChoices("identifier", "apiKey"),
    )
    label: str | None = None


class DomainRequest(BaseModel):
    domain: str | None = None


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    """Parse the JSON body into ``model``.

    Bodies that are not a JSON object, or whose fields have the wrong type,
    parse as an empty model so the caller reports the missing field.
    """
    try:
        payload = json.loads(await request.body() or b"{}")
    except (ValueError, UnicodeDecodeError):
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    try:
        return model.model_validate(payload)
    except PydanticValidationError:
        return model()


def _require(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(field_name)
    return value.strip()


# ── Dependencies ──────────────────────────────────────────────────────


def require_admin(request: Request) -> None:
    """Reject requests without the configured admin bearer token."""
    expected = request.app.state.settings.admin_api_key
    auth_header = request.headers.get("authorization", "")
    if not expected or not auth_header.startswith(BEARER_PREFIX):
        raise AuthError()
    presented = auth_header[len(BEARER_PREFIX):]
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        raise AuthError()


def get_store(request: Request) -> BlocklistStore:
    return request.app.state.store


# ── Router ────────────────────────────────────────────────────────────


def create_admin_router() -> APIRouter:
    """Create the /admin router."""
    router = APIRouter(
        prefix="/admin",
        tags=["admin"],
        dependencies=[Depends(require_admin)],
    )

    # ── Identifiers ──────────────────────────────────────────────────

    @router.get("/identifiers")
    async def list_identifiers(store: BlocklistStore = Depends(get_store)):
        return [entry.to_dict() for entry in store.list_entries()]

    @router.post("/identifiers", status_code=201)
    async def upsert_identifier(
        request: Request,
        store: BlocklistStore = Depends(get_store),
    ):
        body = await _parse_body(request, IdentifierRequest)
        identifier = _require(body.identifier, "identifier")
        label = _require(body.label, "label")
        entry = await store.upsert_identifier(identifier, label)
        return entry.to_dict()

    @router.delete("/identifiers/{identifier}")
    async def delete_identifier(
        identifier: str,
        store: BlocklistStore = Depends(get_store),
    ):
        await store.remove_identifier(identifier)
        return {"ok": True}

    # ── Per-identifier domains ───────────────────────────────────────

    @router.get("/identifiers/{identifier}/blocked-domains")
    async def list_identifier_domains(
        identifier: str,
        store: BlocklistStore = Depends(get_store),
    ):
        return store.list_identifier_domains(identifier)

    @router.post("/identifiers/{identifier}/blocked-domains")
    async def add_identifier_domain(
        identifier: str,
        request: Request,
        store: BlocklistStore = Depends(get_store),
    ):
        # Unknown identifier is reported before a missing domain.
        store.get_entry(identifier)
        body = await _parse_body(request, DomainRequest)
        domain = normalize_domain(_require(body.domain, "domain"))
        entry = await store.add_identifier_domain(identifier, domain)
        return entry.to_dict()

    @router.delete("/identifiers/{identifier}/blocked-domains/{domain}")
    async def delete_identifier_domain(
        identifier: str,
        domain: str,
        store: BlocklistStore = Depends(get_store),
    ):
        await store.remove_identifier_domain(identifier, normalize_domain(domain))
        return {"ok": True}

    # ── Global domains ───────────────────────────────────────────────

    @router.get("/domains")
    async def list_domains(store: BlocklistStore = Depends(get_store)):
        return store.list_global_domains()

    @router.post("/domains", status_code=201)
    async def add_domain(
        request: Request,
        store: BlocklistStore = Depends(get_store),
    ):
        body = await _parse_body(request, DomainRequest)
        domain = normalize_domain(_require(body.domain, "domain"))
        await store.add_global_domain(domain)
        return {"ok": True}

    @router.delete("/domains/{domain}")
    async def delete_domain(
        domain: str,
        store: BlocklistStore = Depends(get_store),
    ):
        await store.remove_global_domain(normalize_domain(domain))
        return {"ok": True}

    return router
