"""Payment endpoints: gateway webhooks, charge creation, gateway listing."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from idcard_engine.common.config import get_settings
from idcard_engine.common.exceptions import AuthorizationError, NotFoundError
from idcard_engine.common.security import APPLICANT_ROLE, Actor, require_actor, require_api_key
from idcard_engine.payments.callbacks import PARSERS, VERIFIERS
from idcard_engine.payments.schemas import (
    ChargeRequest,
    GatewayResponse,
    PaymentResponse,
    PlanResponse,
)
from idcard_engine.transitions.schemas import TransitionErrorInfo, TransitionResult

logger = logging.getLogger(__name__)

router = APIRouter()

_SIGNATURE_HEADERS = ("x-authenticity-token", "x-webhook-signature")


def _get_db():
    from idcard_engine.deps import get_db
    return get_db()


def _rejected(message: str) -> TransitionResult:
    return TransitionResult(
        success=False, error=TransitionErrorInfo(code="VALIDATION", message=message),
    )


@router.post("/webhooks/{gateway}", response_model=TransitionResult)
async def gateway_webhook(gateway: str, request: Request):
    """Receive a gateway status notification and reconcile the payment."""
    from idcard_engine.deps import get_transition_authority

    gateway = gateway.lower()
    parser = PARSERS.get(gateway)
    if parser is None:
        raise HTTPException(status_code=404, detail=f"Unknown gateway '{gateway}'")
    body = await request.body()

    settings = get_settings()
    secret = settings.gateway_webhook_secrets.get(gateway, "")
    if secret:
        signature = next(
            (request.headers[h] for h in _SIGNATURE_HEADERS if h in request.headers), "",
        )
        if not VERIFIERS[gateway](body, signature, secret):
            logger.warning("Invalid %s webhook signature", gateway)
            return _rejected("Invalid signature")
    elif not settings.accepts_unsigned_callbacks():
        logger.warning(
            "Refusing unsigned %s webhook, no secret configured", gateway,
            extra={"environment": settings.environment},
        )
        return _rejected("Webhook signature verification is not configured")

    try:
        event_data = json.loads(body)
    except json.JSONDecodeError:
        return _rejected("Invalid JSON")
    if not isinstance(event_data, dict):
        return _rejected("Invalid JSON")

    callback = parser(event_data)
    if callback is None:
        return _rejected("Unhandled notification or missing charge status")

    db = _get_db()
    async with db.get_session() as session:
        return await get_transition_authority().apply_transition(
            session,
            "apply_gateway_status",
            Actor.gateway(gateway),
            callback.charge_id,
            {"gateway": callback.gateway, "raw_status": callback.raw_status},
        )


@router.post("/students/{user_id}/payments", response_model=PaymentResponse, status_code=201)
async def create_payment(
    user_id: str,
    body: ChargeRequest,
    actor: Actor = Depends(require_actor),
):
    """Charge the applicant through whichever gateway is active right now.

    The amount comes from the selected plan, or from the upgrade price for a
    physical upgrade; a free amount is only taken when no plan applies.
    """
    from idcard_engine.deps import get_payment_service, get_student_service

    if actor.role != APPLICANT_ROLE or actor.id != user_id:
        logger.warning(
            "Authorization denied",
            extra={"actor_id": actor.id, "claimed_role": actor.role, "reason": "charge for another user"},
        )
        raise AuthorizationError("Applicants may only pay for their own profile")
    db = _get_db()
    async with db.get_session() as session:
        profile = await get_student_service().get_profile_by_user(session, user_id)
        if profile is None:
            raise NotFoundError(f"No profile for user {user_id}")
        payment = await get_payment_service().create_charge(
            session, profile, body.amount, body.method, purpose=body.purpose,
        )
        return PaymentResponse.model_validate(payment)


@router.get("/gateways", response_model=list[GatewayResponse])
async def list_gateways(_=Depends(require_api_key)):
    from idcard_engine.deps import get_gateway_service

    db = _get_db()
    async with db.get_session() as session:
        gateways = await get_gateway_service().list_gateways(session)
        return [GatewayResponse.model_validate(g) for g in gateways]


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(actor: Actor = Depends(require_actor)):
    from idcard_engine.deps import get_plan_service

    db = _get_db()
    async with db.get_session() as session:
        plans = await get_plan_service().list_plans(session)
        return [PlanResponse.model_validate(p) for p in plans]
