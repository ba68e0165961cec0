"""Pydantic schemas for admin account responses."""

from datetime import datetime

from pydantic import BaseModel


class AdminResponse(BaseModel):
    id: str
    auth_user_id: str
    email: str
    full_name: str = ""
    role: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
