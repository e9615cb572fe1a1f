"""
api/routes/v1/clients.py -- Tenant (client) management routes. Admin only.

Routes:
  POST /clients                        -- create a client with an initial tier
  GET  /clients                        -- list clients (?active_only=true to hide deactivated)
  GET  /clients/{client_id}            -- client detail
  PATCH /clients/{client_id}/tier      -- change tier; takes effect on the tenant's next request
  POST /clients/{client_id}/deactivate -- revoke all tier access without losing the tier
  POST /clients/{client_id}/reactivate

Every mutation is recorded by ClientManagementService in the audit log with
the acting admin's id and the request IP.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ClientCreate, ClientResponse, TierUpdate
from auth.dependencies import admin_id_of, client_ip, require
from auth.models import Principal
from authz.decisions import AdminRequirement
from tenancy.service import ClientManagementService

# Router-level dependency applies the admin requirement to every route;
# handlers that need the principal request it again (FastAPI caches per request).
_require_admin = require(AdminRequirement())
router = APIRouter(dependencies=[Depends(_require_admin)])


def _service(request: Request) -> ClientManagementService:
    return request.app.state.client_service


@router.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    request: Request,
    body: ClientCreate,
    principal: Principal = Depends(_require_admin),
) -> ClientResponse:
    client = _service(request).create_client(
        admin_id_of(principal),
        body.company_name,
        body.tier,
        contact_email=body.contact_email,
        ip_address=client_ip(request),
    )
    return ClientResponse.from_client(client)


@router.get("/clients", response_model=list[ClientResponse])
def list_clients(request: Request, active_only: bool = False) -> list[ClientResponse]:
    clients = _service(request).list_clients(include_inactive=not active_only)
    return [ClientResponse.from_client(c) for c in clients]


@router.get("/clients/{client_id}", response_model=ClientResponse)
def get_client(request: Request, client_id: str) -> ClientResponse:
    return ClientResponse.from_client(_service(request).get_client(client_id))


@router.patch("/clients/{client_id}/tier", response_model=ClientResponse)
def update_tier(
    request: Request,
    client_id: str,
    body: TierUpdate,
    principal: Principal = Depends(_require_admin),
) -> ClientResponse:
    client = _service(request).update_tier(
        admin_id_of(principal), client_id, body.tier, ip_address=client_ip(request)
    )
    return ClientResponse.from_client(client)


@router.post("/clients/{client_id}/deactivate", response_model=ClientResponse)
def deactivate_client(
    request: Request,
    client_id: str,
    principal: Principal = Depends(_require_admin),
) -> ClientResponse:
    client = _service(request).deactivate(admin_id_of(principal), client_id, ip_address=client_ip(request))
    return ClientResponse.from_client(client)


@router.post("/clients/{client_id}/reactivate", response_model=ClientResponse)
def reactivate_client(
    request: Request,
    client_id: str,
    principal: Principal = Depends(_require_admin),
) -> ClientResponse:
    client = _service(request).reactivate(admin_id_of(principal), client_id, ip_address=client_ip(request))
    return ClientResponse.from_client(client)
