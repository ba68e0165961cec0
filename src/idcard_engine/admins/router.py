"""Admin account API router."""

from fastapi import APIRouter, Depends, Query

from idcard_engine.admins.schemas import AdminResponse
from idcard_engine.common.security import Actor, require_actor

router = APIRouter()


def _get_service():
    from idcard_engine.deps import get_admin_service
    return get_admin_service()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.get("/admins", response_model=list[AdminResponse])
async def list_admins(
    active_only: bool = Query(False),
    actor: Actor = Depends(require_actor),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.authorize(session, actor)
        admins = await svc.list_admins(session, active_only=active_only)
        return [AdminResponse.model_validate(a) for a in admins]
