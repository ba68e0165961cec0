"""Applicant document API router."""

import logging

from fastapi import APIRouter, Depends, Query

from idcard_engine.common.exceptions import AuthorizationError, NotFoundError
from idcard_engine.common.security import APPLICANT_ROLE, Actor, require_actor, require_api_key
from idcard_engine.students.schemas import (
    DocumentCreate,
    DocumentResponse,
    RejectionReasonResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service():
    from idcard_engine.deps import get_student_service
    return get_student_service()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.post("/students/{user_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    user_id: str,
    body: DocumentCreate,
    actor: Actor = Depends(require_actor),
):
    """Register a file the applicant already put in object storage."""
    if actor.role != APPLICANT_ROLE or actor.id != user_id:
        logger.warning(
            "Authorization denied",
            extra={"actor_id": actor.id, "claimed_role": actor.role, "reason": "upload for another user"},
        )
        raise AuthorizationError("Applicants may only upload their own documents")
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        profile = await svc.get_profile_by_user(session, user_id)
        if profile is None:
            raise NotFoundError(f"No profile for user {user_id}")
        document = await svc.add_document(session, profile.id, body.type, body.file_url)
        return DocumentResponse.model_validate(document)


@router.get("/students/{user_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    user_id: str,
    status: str | None = Query(None),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        profile = await svc.get_profile_by_user(session, user_id)
        if profile is None:
            raise NotFoundError(f"No profile for user {user_id}")
        documents = await svc.list_documents(session, profile.id, status=status)
        return [DocumentResponse.model_validate(d) for d in documents]


@router.get("/rejection-reasons", response_model=list[RejectionReasonResponse])
async def list_rejection_reasons(
    document_type: str | None = Query(None),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reasons = await svc.list_rejection_reasons(session, document_type)
        return [RejectionReasonResponse.model_validate(r) for r in reasons]
