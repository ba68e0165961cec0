"""Pydantic schemas for onboarding state responses."""

from pydantic import BaseModel


class ProgressResponse(BaseModel):
    milestone_index: int
    percentage: float
    milestones: dict[str, bool] = {}


class OnboardingResponse(BaseModel):
    user_id: str
    state: str
    route: str
    progress: ProgressResponse
