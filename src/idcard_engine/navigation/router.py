"""Navigation guard API router."""

from fastapi import APIRouter, Depends, Query

from idcard_engine.common.security import require_api_key
from idcard_engine.navigation.schemas import NavigationResponse

router = APIRouter()


def _get_guard():
    from idcard_engine.deps import get_navigation_guard
    return get_navigation_guard()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.get("/navigation/{user_id}", response_model=NavigationResponse)
async def check_navigation(
    user_id: str,
    route: str = Query(..., min_length=1),
    _=Depends(require_api_key),
):
    guard = _get_guard()
    db = _get_db()
    async with db.get_session() as session:
        decision = await guard.check(session, user_id, route)
    return NavigationResponse(
        outcome=decision.outcome.value,
        route=decision.route,
        replace=decision.replace,
        blocks_rendering=decision.blocks_rendering,
    )
