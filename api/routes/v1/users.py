"""
api/routes/v1/users.py -- User provisioning. Admin only.

Routes:
  POST /users -- create an admin or a client user (audited as user_created)

Client users must reference an existing tenant; the tenant is looked up
through ClientManagementService before the account is created. If the
audit entry cannot be written the new account is removed again.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserCreate, UserResponse
from audit.service import AuditLogService
from auth.dependencies import admin_id_of, client_ip, require
from auth.models import ROLE_CLIENT, Principal
from auth.service import AuthService
from authz.decisions import AdminRequirement
from core.errors import InvalidInputError, NotFoundError, StoreUnavailableError
from tenancy.service import ClientManagementService

router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    principal: Principal = Depends(require(AdminRequirement())),
) -> UserResponse:
    auth_service: AuthService = request.app.state.auth_service
    audit: AuditLogService = request.app.state.audit_service
    clients: ClientManagementService = request.app.state.client_service

    if body.role.value == ROLE_CLIENT and body.client_id:
        try:
            clients.get_client(body.client_id)
        except NotFoundError:
            raise InvalidInputError(f"Unknown client: {body.client_id}") from None

    user = auth_service.create_user(body.email, body.password, role=body.role.value, client_id=body.client_id)
    try:
        audit.log_user_created(
            admin_id_of(principal),
            user.id,
            {"email": user.email, "role": user.role, "client_id": user.client_id},
            client_ip(request),
        )
    except StoreUnavailableError:
        auth_service.discard_user(user.id)
        raise
    return UserResponse.from_user(user)
