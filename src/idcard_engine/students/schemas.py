"""Pydantic schemas for applicant document endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DocumentCreate(BaseModel):
    type: str = Field(..., pattern="^(rg|endereco|matricula|foto|selfie)$")
    file_url: str = Field(..., min_length=1, max_length=2048)


class DocumentResponse(BaseModel):
    id: str
    profile_id: str
    type: str
    file_url: str
    status: str
    rejection_reason_id: Optional[str] = None
    rejection_notes: Optional[str] = None
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RejectionReasonResponse(BaseModel):
    id: str
    document_type: str
    reason: str
    description: str = ""

    model_config = {"from_attributes": True}
