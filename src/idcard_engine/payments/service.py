"""Payment charge creation and gateway routing configuration."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.audit.service import AuditService
from idcard_engine.common.config import IdCardSettings
from idcard_engine.common.exceptions import (
    ExternalDependencyError,
    PreconditionError,
    ValidationError,
)
from idcard_engine.common.security import APPLICANT_ROLE, Actor
from idcard_engine.eligibility.resolver import is_qualifying_law_student
from idcard_engine.payments.adapter import SUPPORTED_GATEWAYS, normalize
from idcard_engine.payments.client import GatewayClient
from idcard_engine.payments.models import GatewayConfigModel, PlanModel
from idcard_engine.students.enums import CardStatus, PaymentMethod, PaymentPurpose, PaymentStatus
from idcard_engine.students.models import CardModel, PaymentModel, ProfileModel

logger = logging.getLogger(__name__)

_METHODS = {m.value for m in PaymentMethod}
_PURPOSES = {p.value for p in PaymentPurpose}


class GatewayService:
    """Reads of the gateway routing table. Switching lives in the Transition Authority."""

    async def list_gateways(self, session: AsyncSession) -> list[GatewayConfigModel]:
        result = await session.execute(
            select(GatewayConfigModel).order_by(GatewayConfigModel.gateway_name)
        )
        return list(result.scalars().all())

    async def get_gateway(
        self, session: AsyncSession, gateway_name: str
    ) -> GatewayConfigModel | None:
        result = await session.execute(
            select(GatewayConfigModel).where(GatewayConfigModel.gateway_name == gateway_name)
        )
        return result.scalar_one_or_none()

    async def get_active_gateway(self, session: AsyncSession) -> GatewayConfigModel | None:
        result = await session.execute(
            select(GatewayConfigModel).where(GatewayConfigModel.is_active.is_(True))
        )
        return result.scalars().first()

    async def seed_gateways(
        self, session: AsyncSession, names: list[str], active: str | None = None
    ) -> list[GatewayConfigModel]:
        """Insert missing gateway rows. The first seeded row becomes active
        only when no row is active yet."""
        unknown = set(names) - SUPPORTED_GATEWAYS
        if unknown:
            raise ValidationError(f"Unsupported gateways: {', '.join(sorted(unknown))}")
        has_active = await self.get_active_gateway(session) is not None
        for name in names:
            if await self.get_gateway(session, name) is not None:
                continue
            make_active = not has_active and (active is None or active == name)
            session.add(GatewayConfigModel(gateway_name=name, is_active=make_active))
            has_active = has_active or make_active
        await session.flush()
        return await self.list_gateways(session)


# Catalogue inserted by ``idcard seed-plans``; prices are starting values staff can change later.
DEFAULT_PLANS: tuple[dict[str, Any], ...] = (
    {"code": "geral_digital", "name": "Carteirinha Digital", "price": Decimal("29.90")},
    {"code": "direito_digital", "name": "Carteirinha Digital OAB Estudante",
     "price": Decimal("39.90"), "is_law": True},
    {"code": "geral_fisica", "name": "Carteirinha Digital + Física",
     "price": Decimal("49.90"), "is_physical": True},
    {"code": "direito_fisica", "name": "Carteirinha Digital + Física OAB Estudante",
     "price": Decimal("59.90"), "is_physical": True, "is_law": True},
)


class PlanService:
    """Reads of the plan catalogue. Selecting a plan lives in the Transition Authority."""

    async def list_plans(self, session: AsyncSession, active_only: bool = True) -> list[PlanModel]:
        stmt = select(PlanModel).order_by(PlanModel.price, PlanModel.code)
        if active_only:
            stmt = stmt.where(PlanModel.is_active.is_(True))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_plan(self, session: AsyncSession, plan_id: str) -> PlanModel | None:
        return await session.get(PlanModel, plan_id)

    async def get_plan_by_code(self, session: AsyncSession, code: str) -> PlanModel | None:
        result = await session.execute(select(PlanModel).where(PlanModel.code == code))
        return result.scalar_one_or_none()

    async def seed_plans(
        self, session: AsyncSession, plans: tuple[dict[str, Any], ...] = DEFAULT_PLANS
    ) -> list[PlanModel]:
        """Insert plans whose code is missing; existing rows keep their prices."""
        for spec in plans:
            if await self.get_plan_by_code(session, spec["code"]) is None:
                session.add(PlanModel(**spec))
        await session.flush()
        return await self.list_plans(session, active_only=False)


class PaymentService:
    """Routes new charges through the currently active gateway."""

    def __init__(
        self,
        settings: IdCardSettings,
        gateway_service: GatewayService,
        audit_service: AuditService | None = None,
        clients: dict[str, GatewayClient] | None = None,
        plan_service: PlanService | None = None,
    ):
        self.settings = settings
        self.gateways = gateway_service
        self.plans = plan_service or PlanService()
        self.audit_service = audit_service
        self.clients = clients or {}

    def _client_for(self, gateway_name: str) -> GatewayClient:
        client = self.clients.get(gateway_name)
        if client is not None:
            return client
        base_url = self.settings.gateway_base_urls.get(gateway_name)
        if not base_url:
            raise ExternalDependencyError(f"Gateway '{gateway_name}' is not configured")
        client = GatewayClient(
            gateway_name,
            base_url,
            token=self.settings.gateway_tokens.get(gateway_name, ""),
            timeout=self.settings.external_timeout,
        )
        self.clients[gateway_name] = client
        return client

    async def _card_amount(
        self, session: AsyncSession, profile: ProfileModel, amount: Decimal | None
    ) -> tuple[Decimal, str | None]:
        if profile.plan_id is None:
            if is_qualifying_law_student(profile):
                raise PreconditionError("A plan must be selected before payment")
            if amount is None:
                raise ValidationError("amount is required when no plan is selected")
            return Decimal(amount), None
        plan = await self.plans.get_plan(session, profile.plan_id)
        if plan is None or not plan.is_active:
            raise PreconditionError("Selected plan is no longer available")
        if amount is not None and Decimal(amount) != plan.price:
            raise ValidationError(f"amount does not match plan price {plan.price}")
        return plan.price, plan.id

    async def _upgrade_amount(
        self, session: AsyncSession, profile: ProfileModel, amount: Decimal | None
    ) -> Decimal:
        result = await session.execute(
            select(CardModel).where(
                CardModel.profile_id == profile.id,
                CardModel.status == CardStatus.ACTIVE.value,
            )
        )
        card = result.scalar_one_or_none()
        if card is None:
            raise PreconditionError("An active card is required for a physical upgrade")
        if card.is_physical:
            raise PreconditionError("Card is already physical")
        price = self.settings.physical_upgrade_price
        if amount is not None and Decimal(amount) != price:
            raise ValidationError(f"amount does not match upgrade price {price}")
        return price

    async def create_charge(
        self,
        session: AsyncSession,
        profile: ProfileModel,
        amount: Decimal | None = None,
        method: str = PaymentMethod.PIX.value,
        customer: dict[str, Any] | None = None,
        purpose: str = PaymentPurpose.CARD.value,
    ) -> PaymentModel:
        """Create a charge and persist it attributed to the gateway used.

        That attribution is permanent: switching gateways later routes new
        charges elsewhere but never rewrites this row. Card charges are priced
        by the selected plan when there is one; physical upgrades always cost
        ``physical_upgrade_price``.
        """
        if method not in _METHODS:
            raise ValidationError(f"Unknown payment method '{method}'")
        if purpose not in _PURPOSES:
            raise ValidationError(f"Unknown payment purpose '{purpose}'")
        if amount is not None and Decimal(amount) <= 0:
            raise ValidationError("amount must be positive")
        if not profile.profile_completed:
            raise PreconditionError("Profile must be completed before payment")

        plan_id = None
        if purpose == PaymentPurpose.CARD.value:
            amount, plan_id = await self._card_amount(session, profile, amount)
        else:
            amount = await self._upgrade_amount(session, profile, amount)

        gateway = await self.gateways.get_active_gateway(session)
        if gateway is None:
            raise PreconditionError("No active payment gateway")

        client = self._client_for(gateway.gateway_name)
        charge = await client.create_charge(
            amount,
            method,
            customer or {"name": profile.full_name, "cpf": profile.cpf},
        )
        status = normalize(gateway.gateway_name, charge.raw_status)

        payment = PaymentModel(
            profile_id=profile.id,
            method=method,
            amount=amount,
            plan_id=plan_id,
            purpose=purpose,
            gateway_name=gateway.gateway_name,
            gateway_charge_id=charge.charge_id,
            status=status.value,
            confirmed_at=datetime.now(timezone.utc) if status is PaymentStatus.APPROVED else None,
            metadata_={"raw_status": charge.raw_status},
        )
        session.add(payment)
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_action(
                session,
                "payment_charge_created",
                Actor(id=profile.user_id, role=APPLICANT_ROLE),
                profile_id=profile.id,
                target_type="payment",
                target_id=payment.id,
                extra={
                    "gateway": gateway.gateway_name,
                    "charge_id": charge.charge_id,
                    "status": status.value,
                    "purpose": purpose,
                    "amount": str(amount),
                },
            )
        return payment
