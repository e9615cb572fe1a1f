"""
api/routes/v1/audit.py -- Read-only access to the audit log. Admin only.

Routes:
  GET /audit/logs                                  -- filtered query (admin_id, action_type, target_table,
                                                      start_date, end_date, limit, offset)
  GET /audit/logs/recent                           -- most recent entries
  GET /audit/logs/target/{target_table}/{target_id} -- history of one record (limit, offset)
  GET /audit/logs/admin/{admin_id}                 -- actions by one admin
  GET /audit/stats                                 -- counts by action type and admin

There is no write, update or delete route. Entries are only
ever created as a side effect of audited admin actions.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditLogResponse, AuditStatsResponse
from audit.models import AuditFilters
from audit.service import AuditLogService
from auth.dependencies import require
from authz.decisions import AdminRequirement

router = APIRouter(dependencies=[Depends(require(AdminRequirement()))])


def _service(request: Request) -> AuditLogService:
    return request.app.state.audit_service


@router.get("/audit/logs", response_model=list[AuditLogResponse])
def query_logs(
    request: Request,
    admin_id: Optional[str] = None,
    action_type: Optional[str] = None,
    target_table: Optional[str] = None,
    target_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> list[AuditLogResponse]:
    filters = AuditFilters(
        admin_id=admin_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return [AuditLogResponse.from_entry(e) for e in _service(request).query_logs(filters)]


@router.get("/audit/logs/recent", response_model=list[AuditLogResponse])
def recent_logs(request: Request, limit: Optional[int] = Query(default=None, ge=1)) -> list[AuditLogResponse]:
    return [AuditLogResponse.from_entry(e) for e in _service(request).get_recent_logs(limit)]


@router.get("/audit/logs/target/{target_table}/{target_id}", response_model=list[AuditLogResponse])
def logs_for_target(
    request: Request,
    target_table: str,
    target_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> list[AuditLogResponse]:
    entries = _service(request).get_logs_for_target(target_table, target_id, limit, offset)
    return [AuditLogResponse.from_entry(e) for e in entries]



@router.get("/audit/logs/admin/{admin_id}", response_model=list[AuditLogResponse])
def logs_for_admin(
    request: Request,
    admin_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
) -> list[AuditLogResponse]:
    return [AuditLogResponse.from_entry(e) for e in _service(request).get_logs_for_admin(admin_id, limit)]


@router.get("/audit/stats", response_model=AuditStatsResponse)
def log_statistics(
    request: Request,
    admin_id: Optional[str] = None,
    action_type: Optional[str] = None,
    target_table: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> AuditStatsResponse:
    filters = AuditFilters(
        admin_id=admin_id,
        action_type=action_type,
        target_table=target_table,
        start_date=start_date,
        end_date=end_date,
    )
    return AuditStatsResponse.from_stats(_service(request).get_log_statistics(filters))
