"""Pydantic schemas for transition requests and results."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from idcard_engine.audit.schemas import AuditActionResponse


class TransitionRequest(BaseModel):
    target: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


class TransitionErrorInfo(BaseModel):
    code: str
    message: str


class TransitionResult(BaseModel):
    """Outcome of one transition: the audit record it wrote, or why it failed."""

    success: bool
    action: Optional[AuditActionResponse] = None
    error: Optional[TransitionErrorInfo] = None


class PrintBatchRequest(BaseModel):
    card_ids: list[str] = Field(..., min_length=1)


class BatchItemResult(BaseModel):
    card_id: str
    success: bool
    print_id: Optional[str] = None
    action_id: Optional[str] = None
    error: Optional[TransitionErrorInfo] = None


class BatchResult(BaseModel):
    """Per-card outcomes, or the reason the whole batch was refused."""

    batch_id: str
    success: bool = True
    items: list[BatchItemResult] = []
    error: Optional[TransitionErrorInfo] = None

    @property
    def succeeded(self) -> list[BatchItemResult]:
        return [i for i in self.items if i.success]

    @property
    def failed(self) -> list[BatchItemResult]:
        return [i for i in self.items if not i.success]
