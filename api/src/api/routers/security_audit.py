"""Security audit trail endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from warden.models import SecurityAuditEvent
from warden.models.enums import SecurityEventType, Severity

from api.dependencies import (
    Principal,
    ensure_can_read,
    get_current_principal,
    get_security_services,
    require_admin,
)
from api.services.security_audit import AuditQuery
from api.services.security_services import SecurityServices

router = APIRouter()


def _event_payload(event: SecurityAuditEvent) -> dict:
    return {
        "id": str(event.id),
        "principal_id": event.principal_id,
        "event_type": event.event_type.value,
        "event_data": event.event_data or {},
        "severity": event.severity.value,
        "origin_fingerprint": event.origin_fingerprint,
        "occurred_at": event.occurred_at.isoformat() if event.occurred_at else None,
    }


async def _list(services: SecurityServices, query: AuditQuery) -> dict:
    events, total = await services.audit.list_events(query)
    return {"events": [_event_payload(event) for event in events], "total": total}


@router.get("/audit/log")
async def list_audit_events(
    principal_id: str | None = Query(default=None, max_length=128),
    event_type: list[SecurityEventType] = Query(default=[]),
    severity: list[Severity] = Query(default=[]),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    target = principal_id or principal.id
    ensure_can_read(principal, target)
    return await _list(
        services,
        AuditQuery(
            principal_id=target,
            event_types=event_type,
            severities=severity,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        ),
    )


@router.get("/audit/system")
async def list_system_audit_events(
    event_type: list[SecurityEventType] = Query(default=[]),
    severity: list[Severity] = Query(default=[]),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    """Every principal's events, including those with no principal."""
    return await _list(
        services,
        AuditQuery(
            principal_id=None,
            event_types=event_type,
            severities=severity,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        ),
    )


@router.get("/audit/stats")
async def audit_stats(
    principal_id: str | None = Query(default=None, max_length=128),
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    target = principal_id or principal.id
    ensure_can_read(principal, target)
    return await services.audit.stats(target)


@router.delete("/audit/principal/{principal_id}")
async def erase_audit_events(
    principal_id: str,
    _: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    deleted = await services.audit.erase_principal(principal_id)
    return {"deleted": deleted}
