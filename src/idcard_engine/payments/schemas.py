"""Pydantic schemas for payment and gateway API payloads."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ChargeRequest(BaseModel):
    # Omitted when a plan is selected or for a physical upgrade; the price is known.
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    method: str = Field(default="pix", pattern="^(pix|credit_card|debit_card)$")
    purpose: str = Field(default="card", pattern="^(card|physical_upgrade)$")


class PaymentResponse(BaseModel):
    id: str
    profile_id: str
    method: str
    amount: Decimal
    purpose: str = "card"
    plan_id: Optional[str] = None
    gateway_name: Optional[str] = None
    gateway_charge_id: Optional[str] = None
    status: str
    confirmed_at: Optional[datetime] = None
    receipt_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class GatewayResponse(BaseModel):
    gateway_name: str
    is_active: bool
    sandbox_mode: bool = False
    supports_card: bool = True
    supports_pix: bool = True

    model_config = {"from_attributes": True}


class PlanResponse(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    price: Decimal
    is_physical: bool
    is_law: bool

    model_config = {"from_attributes": True}
