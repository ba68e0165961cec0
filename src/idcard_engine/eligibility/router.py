"""Onboarding state API router."""

from fastapi import APIRouter, Depends

from idcard_engine.common.security import require_api_key
from idcard_engine.eligibility.resolver import evaluate
from idcard_engine.eligibility.schemas import OnboardingResponse, ProgressResponse

router = APIRouter()


def _get_students():
    from idcard_engine.deps import get_student_service
    return get_student_service()


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


@router.get("/students/{user_id}/onboarding", response_model=OnboardingResponse)
async def get_onboarding_state(user_id: str, _=Depends(require_api_key)):
    """Resolve the applicant's current step from their stored facts."""
    students = _get_students()
    db = _get_db()
    async with db.get_session() as session:
        snapshot = await students.load_snapshot_for_user(session, user_id)
    resolution = evaluate(snapshot)
    return OnboardingResponse(
        user_id=user_id,
        state=resolution.state.value,
        route=resolution.route,
        progress=ProgressResponse(
            milestone_index=resolution.progress.milestone_index,
            percentage=resolution.progress.percentage,
            milestones=resolution.progress.milestones,
        ),
    )
