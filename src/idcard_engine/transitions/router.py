"""Transition API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from idcard_engine.common.exceptions import HTTP_STATUS_BY_CODE
from idcard_engine.common.security import Actor, require_actor
from idcard_engine.transitions.schemas import (
    BatchResult,
    PrintBatchRequest,
    TransitionRequest,
    TransitionResult,
)

router = APIRouter()


def _get_authority():
    from idcard_engine.deps import get_transition_authority
    return get_transition_authority()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.get("/transitions", response_model=list[str])
async def list_transitions(actor: Actor = Depends(require_actor)):
    return _get_authority().transition_names


@router.post(
    "/transitions/{name}",
    response_model=TransitionResult,
    responses={code: {"model": TransitionResult} for code in set(HTTP_STATUS_BY_CODE.values())},
)
async def apply_transition(
    name: str,
    body: TransitionRequest,
    actor: Actor = Depends(require_actor),
):
    """Apply a named transition; refusals come back with the error's status code."""
    authority = _get_authority()
    db = _get_db()
    async with db.get_session() as session:
        result = await authority.apply_transition(
            session, name, actor, body.target, body.payload,
        )
    if result.success:
        return result
    return JSONResponse(
        status_code=HTTP_STATUS_BY_CODE.get(result.error.code, 400),
        content=result.model_dump(mode="json"),
    )


@router.post(
    "/print-batches",
    response_model=BatchResult,
    responses={code: {"model": BatchResult} for code in set(HTTP_STATUS_BY_CODE.values())},
)
async def create_print_batch(
    body: PrintBatchRequest,
    actor: Actor = Depends(require_actor),
):
    """Print the selected cards. Per-card failures are reported, not raised."""
    batch = await _get_authority().print_batch(_get_db(), actor, body.card_ids)
    if batch.success:
        return batch
    return JSONResponse(
        status_code=HTTP_STATUS_BY_CODE.get(batch.error.code, 400),
        content=batch.model_dump(mode="json"),
    )
