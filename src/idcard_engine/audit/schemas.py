"""Pydantic schemas for audit log API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditActionResponse(BaseModel):
    id: str
    sequence: int
    action_type: str
    performed_by: str
    actor_role: str
    profile_id: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    details: Optional[str] = None
    extra: dict[str, Any] = {}
    prev_hash: Optional[str] = None
    event_hash: str
    signature: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditChainVerification(BaseModel):
    valid: bool
    events_checked: int
    break_at: Optional[str] = None
