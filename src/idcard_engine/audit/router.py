"""Audit log API router."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from idcard_engine.audit.schemas import AuditActionResponse, AuditChainVerification
from idcard_engine.common.security import Actor, require_actor

router = APIRouter()


def _get_service():
    from idcard_engine.deps import get_audit_service
    return get_audit_service()


def _get_admins():
    from idcard_engine.deps import get_admin_service
    return get_admin_service()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.get("/audit", response_model=list[AuditActionResponse])
async def list_actions(
    profile_id: str | None = Query(None),
    target_id: str | None = Query(None),
    action_type: str | None = Query(None),
    performed_by: str | None = Query(None),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_actor),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await _get_admins().authorize(session, actor)
        actions = await svc.get_actions(
            session,
            profile_id=profile_id,
            target_id=target_id,
            action_type=action_type,
            performed_by=performed_by,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )
        return [AuditActionResponse.model_validate(a) for a in actions]


@router.get("/audit/verify", response_model=AuditChainVerification)
async def verify_audit_chain(actor: Actor = Depends(require_actor)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await _get_admins().authorize(session, actor)
        result = await svc.verify_chain(session)
        return AuditChainVerification(**result)
