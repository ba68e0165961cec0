"""Transition Authority — the only writer of onboarding status facts.

Every transition runs inside the caller's session as one unit, always in
the same order: authorize, validate inputs, check the precondition, apply a
conditional update on the expected prior value, append the audit record.
Anything that goes wrong raises before commit, so the session rolls back
and neither the mutation nor the audit row survives.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.admins.models import AdminUserModel
from idcard_engine.admins.service import AdminService
from idcard_engine.audit.models import AdminActionModel
from idcard_engine.audit.schemas import AuditActionResponse
from idcard_engine.audit.service import AuditService
from idcard_engine.common.config import IdCardSettings
from idcard_engine.common.database import DatabaseManager
from idcard_engine.common.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalDependencyError,
    IdCardError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from idcard_engine.common.models import generate_uuid
from idcard_engine.common.security import (
    APPLICANT_ROLE,
    FACE_PIPELINE_ROLE,
    GATEWAY_ROLE,
    SUPER_ROLE,
    Actor,
)
from idcard_engine.eligibility.resolver import OnboardingState, is_qualifying_law_student, resolve
from idcard_engine.payments.adapter import can_transition, normalize
from idcard_engine.payments.callbacks import GatewayCallback
from idcard_engine.payments.models import GatewayConfigModel
from idcard_engine.payments.service import GatewayService, PlanService
from idcard_engine.storage.client import ObjectStorage
from idcard_engine.students.card_codes import generate_card_number, qr_payload
from idcard_engine.students.enums import (
    CardStatus,
    DocumentStatus,
    DocumentType,
    PaymentPurpose,
    PaymentStatus,
    ShippingStatus,
)
from idcard_engine.students.models import (
    CardModel,
    DocumentModel,
    FaceValidationModel,
    PaymentModel,
    PrintRecordModel,
    ProfileModel,
)
from idcard_engine.students.service import StudentService
from idcard_engine.students.validators import normalize_cpf, parse_birth_date, validate_cpf
from idcard_engine.transitions.schemas import (
    BatchItemResult,
    BatchResult,
    TransitionErrorInfo,
    TransitionResult,
)

logger = logging.getLogger(__name__)

# Manual confirmation is allowed from any state that has not already settled.
_MARKABLE_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PENDING.value,
    PaymentStatus.PROCESSING.value,
    PaymentStatus.REJECTED.value,
})

_PRINTABLE_SHIPPING_STATUSES = (None, ShippingStatus.PENDING.value, ShippingStatus.FAILED.value)

# A plan is locked once a card charge that is still live exists.
_PLAN_LOCKING_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PENDING.value,
    PaymentStatus.PROCESSING.value,
    PaymentStatus.APPROVED.value,
})

# Documents the face pipeline compares; approved together when faces match.
_FACE_DOCUMENT_TYPES = (DocumentType.RG.value, DocumentType.SELFIE.value, DocumentType.PHOTO.value)

_PROFILE_TEXT_FIELDS = ("full_name", "institution", "course", "education_level")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _optional_text(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


def _require_text(value: Any, field: str) -> str:
    text = _optional_text(value, field)
    if text is None:
        raise ValidationError(f"{field} is required")
    return text


def _require_flag(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def _require_score(value: Any, field: str) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if not 0.0 <= score <= 100.0:
        raise ValidationError(f"{field} must be between 0 and 100")
    return score


def _as_domain_error(exc: Exception) -> IdCardError:
    if isinstance(exc, IdCardError):
        return exc
    logger.error("Database error during transition", exc_info=exc)
    return ExternalDependencyError("Database operation failed")


def _deny(actor: Actor, reason: str) -> AuthorizationError:
    logger.warning(
        "Authorization denied",
        extra={"actor_id": actor.id, "claimed_role": actor.role, "reason": reason},
    )
    return AuthorizationError(f"Actor not authorized: {reason}")


TransitionHandler = Callable[
    [AsyncSession, Actor, str | None, dict[str, Any]], Awaitable[AdminActionModel]
]


class TransitionAuthority:
    """Named, guarded, audited mutations of applicant facts."""

    def __init__(
        self,
        settings: IdCardSettings,
        students: StudentService,
        admins: AdminService,
        audit: AuditService,
        gateways: GatewayService | None = None,
        storage: ObjectStorage | None = None,
        plans: PlanService | None = None,
    ):
        self.settings = settings
        self.students = students
        self.admins = admins
        self.audit = audit
        self.gateways = gateways or GatewayService()
        self.storage = storage
        self.plans = plans or PlanService()
        self._handlers: dict[str, TransitionHandler] = {
            "approve_document": self._do_approve_document,
            "reject_document": self._do_reject_document,
            "override_face_validation": self._do_override_face_validation,
            "mark_payment_paid": self._do_mark_payment_paid,
            "refund_payment": self._do_refund_payment,
            "toggle_admin_active": self._do_toggle_admin_active,
            "create_admin": self._do_create_admin,
            "switch_active_gateway": self._do_switch_active_gateway,
            "register_shipment": self._do_register_shipment,
            "apply_gateway_status": self._do_apply_gateway_status,
            "record_face_validation": self._do_record_face_validation,
            "complete_profile": self._do_complete_profile,
            "accept_terms": self._do_accept_terms,
            "request_manual_review": self._do_request_manual_review,
            "select_plan": self._do_select_plan,
            "issue_card": self._do_issue_card,
            "upgrade_card_to_physical": self._do_upgrade_card_to_physical,
        }

    @property
    def transition_names(self) -> list[str]:
        return sorted(self._handlers)

    # ── Authorization ──

    async def _authorize_staff(
        self, session: AsyncSession, actor: Actor, super_only: bool = False
    ) -> AdminUserModel:
        return await self.admins.authorize(session, actor, super_only=super_only)

    def _authorize_role(self, actor: Actor, role: str) -> None:
        if actor.role != role:
            raise _deny(actor, f"{role} actor required")

    async def _authorize_applicant(
        self, session: AsyncSession, actor: Actor, user_id: str
    ) -> ProfileModel | None:
        """An applicant may only move their own profile forward."""
        if actor.role != APPLICANT_ROLE:
            raise _deny(actor, "applicant actor required")
        if actor.id != user_id:
            raise _deny(actor, "applicants may only act on their own profile")
        return await self.students.get_profile_by_user(session, user_id)

    # ── Lookups ──

    async def _document(self, session: AsyncSession, document_id: str) -> DocumentModel:
        document = await self.students.get_document(session, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def _payment(self, session: AsyncSession, payment_id: str) -> PaymentModel:
        payment = await self.students.get_payment(session, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    async def _profile(self, session: AsyncSession, profile_id: str) -> ProfileModel:
        profile = await self.students.get_profile(session, profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        return profile

    async def _card(self, session: AsyncSession, card_id: str) -> CardModel:
        card = await self.students.get_card(session, card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found")
        return card

    # ── Documents ──

    async def approve_document(
        self,
        session: AsyncSession,
        actor: Actor,
        document_id: str,
        notes: str | None = None,
    ) -> AdminActionModel:
        await self._authorize_staff(session, actor)
        document_id = _require_text(document_id, "document_id")
        notes = _optional_text(notes, "notes")
        document = await self._document(session, document_id)
        if document.status == DocumentStatus.APPROVED.value:
            raise PreconditionError(f"Document {document_id} is already approved")

        previous = document.status
        document = await self.students.conditional_update(
            session, DocumentModel, document.id,
            expected={"status": previous},
            values={
                "status": DocumentStatus.APPROVED.value,
                "rejection_reason_id": None,
                "rejection_notes": None,
                "validated_by": actor.id,
                "validated_at": _now(),
            },
        )
        return await self.audit.record_action(
            session, "document_approved", actor,
            profile_id=document.profile_id,
            target_type="document",
            target_id=document.id,
            details=notes,
            extra={"document_type": document.type, "previous_status": previous},
        )

    async def reject_document(
        self,
        session: AsyncSession,
        actor: Actor,
        document_id: str,
        reason_id: str,
        notes: str,
    ) -> AdminActionModel:
        """Reject a pending document with a catalogued reason and free-text notes.

        Approved documents cannot be rejected here; the applicant's progress
        only moves forward through this path.
        """
        await self._authorize_staff(session, actor)
        document_id = _require_text(document_id, "document_id")
        reason_id = _require_text(reason_id, "reason_id")
        notes = _require_text(notes, "notes")

        reason = await self.students.get_rejection_reason(session, reason_id)
        if reason is None or not reason.is_active:
            raise ValidationError(f"Unknown rejection reason '{reason_id}'")
        document = await self._document(session, document_id)
        if document.status != DocumentStatus.PENDING.value:
            raise PreconditionError(
                f"Document {document_id} is {document.status}, only pending documents can be rejected"
            )

        document = await self.students.conditional_update(
            session, DocumentModel, document.id,
            expected={"status": DocumentStatus.PENDING.value},
            values={
                "status": DocumentStatus.REJECTED.value,
                "rejection_reason_id": reason.id,
                "rejection_notes": notes,
                "validated_by": actor.id,
                "validated_at": _now(),
            },
        )
        return await self.audit.record_action(
            session, "document_rejected", actor,
            profile_id=document.profile_id,
            target_type="document",
            target_id=document.id,
            details=f"{reason.reason}: {notes}",
            extra={"document_type": document.type, "reason_id": reason.id},
        )

    # ── Face validation ──

    async def override_face_validation(
        self,
        session: AsyncSession,
        actor: Actor,
        profile_id: str,
        justification: str,
    ) -> AdminActionModel:
        """Mark the applicant's face as validated by staff decision.

        No FaceValidation attempt is written; the audit record is the only
        trace of the override.
        """
        await self._authorize_staff(session, actor)
        profile_id = _require_text(profile_id, "profile_id")
        justification = _require_text(justification, "justification")
        profile = await self._profile(session, profile_id)
        if profile.face_validated:
            raise PreconditionError("Face is already validated")

        await self.students.conditional_update(
            session, ProfileModel, profile.id,
            expected={"face_validated": False},
            values={"face_validated": True},
        )
        return await self.audit.record_action(
            session, "face_validation_override", actor,
            profile_id=profile.id,
            target_type="profile",
            target_id=profile.id,
            details=justification,
            extra={"manual_review_requested": bool(profile.manual_review_requested)},
        )

    async def record_face_validation(
        self,
        session: AsyncSession,
        actor: Actor,
        profile_id: str,
        similarity_rg: float,
        similarity_photo: float | None,
        passed: bool,
        details: dict[str, Any] | None = None,
    ) -> AdminActionModel:
        """Store a face comparison attempt from the face pipeline.

        A pass validates the face and approves the pending rg, selfie and
        photo documents it compared. A failure rejects the pending selfie
        with the similarity scores as the reason.
        """
        self._authorize_role(actor, FACE_PIPELINE_ROLE)
        profile_id = _require_text(profile_id, "profile_id")
        similarity_rg = _require_score(similarity_rg, "similarity_rg")
        if similarity_photo is not None:
            similarity_photo = _require_score(similarity_photo, "similarity_photo")
        passed = _require_flag(passed, "passed")
        if details is not None and not isinstance(details, dict):
            raise ValidationError("details must be an object")

        profile = await self._profile(session, profile_id)
        latest: dict[str, DocumentModel] = {}
        for document in await self.students.list_documents(session, profile.id):
            if document.type in _FACE_DOCUMENT_TYPES and document.type not in latest:
                latest[document.type] = document
        if DocumentType.RG.value not in latest or DocumentType.SELFIE.value not in latest:
            raise PreconditionError("Face validation needs an rg and a selfie document")

        attempt = FaceValidationModel(
            profile_id=profile.id,
            similarity_rg=similarity_rg,
            similarity_photo=similarity_photo,
            passed=passed,
            details=details or {},
        )
        session.add(attempt)
        await session.flush()

        now = _now()
        if passed:
            if not profile.face_validated:
                await self.students.conditional_update(
                    session, ProfileModel, profile.id,
                    expected={"face_validated": False},
                    values={"face_validated": True},
                )
            pending_ids = [
                d.id for d in latest.values() if d.status == DocumentStatus.PENDING.value
            ]
            if pending_ids:
                await session.execute(
                    update(DocumentModel)
                    .where(
                        DocumentModel.id.in_(pending_ids),
                        DocumentModel.status == DocumentStatus.PENDING.value,
                    )
                    .values(
                        status=DocumentStatus.APPROVED.value,
                        validated_by=actor.id,
                        validated_at=now,
                        updated_at=now,
                    )
                )
            action_type = "face_validation_passed"
            summary = None
        else:
            parts = [f"Face does not match rg ({round(similarity_rg)}%)"]
            if similarity_photo is not None:
                parts.append(f"photo ({round(similarity_photo)}%)")
            summary = ", ".join(parts)
            selfie = latest[DocumentType.SELFIE.value]
            if selfie.status == DocumentStatus.PENDING.value:
                await self.students.conditional_update(
                    session, DocumentModel, selfie.id,
                    expected={"status": DocumentStatus.PENDING.value},
                    values={
                        "status": DocumentStatus.REJECTED.value,
                        "rejection_notes": summary,
                        "validated_by": actor.id,
                        "validated_at": now,
                    },
                )
            action_type = "face_validation_failed"

        return await self.audit.record_action(
            session, action_type, actor,
            profile_id=profile.id,
            target_type="face_validation",
            target_id=attempt.id,
            details=summary,
            extra={"similarity_rg": similarity_rg, "similarity_photo": similarity_photo},
        )

    # ── Payments ──

    async def mark_payment_paid(
        self,
        session: AsyncSession,
        actor: Actor,
        payment_id: str,
        justification: str,
        receipt_url: str | None = None,
    ) -> AdminActionModel:
        """Manual confirmation, independent of what the gateway reports."""
        await self._authorize_staff(session, actor)
        payment_id = _require_text(payment_id, "payment_id")
        justification = _require_text(justification, "justification")
        receipt_url = _optional_text(receipt_url, "receipt_url")
        payment = await self._payment(session, payment_id)
        if payment.status not in _MARKABLE_PAYMENT_STATUSES:
            raise PreconditionError(f"Payment {payment_id} is already {payment.status}")

        previous = payment.status
        values: dict[str, Any] = {
            "status": PaymentStatus.APPROVED.value,
            "confirmed_at": _now(),
        }
        if receipt_url:
            values["receipt_url"] = receipt_url
        payment = await self.students.conditional_update(
            session, PaymentModel, payment.id,
            expected={"status": previous},
            values=values,
        )
        return await self.audit.record_action(
            session, "payment_marked_paid", actor,
            profile_id=payment.profile_id,
            target_type="payment",
            target_id=payment.id,
            details=justification,
            extra={
                "previous_status": previous,
                "gateway": payment.gateway_name,
                "amount": str(payment.amount),
                "receipt_url": payment.receipt_url,
            },
        )

    async def refund_payment(
        self,
        session: AsyncSession,
        actor: Actor,
        payment_id: str,
        justification: str,
    ) -> AdminActionModel:
        await self._authorize_staff(session, actor)
        payment_id = _require_text(payment_id, "payment_id")
        justification = _require_text(justification, "justification")
        payment = await self._payment(session, payment_id)
        if payment.status != PaymentStatus.APPROVED.value:
            raise PreconditionError(
                f"Only approved payments can be refunded, payment {payment_id} is {payment.status}"
            )

        payment = await self.students.conditional_update(
            session, PaymentModel, payment.id,
            expected={"status": PaymentStatus.APPROVED.value},
            values={"status": PaymentStatus.REFUNDED.value},
        )
        return await self.audit.record_action(
            session, "payment_refunded", actor,
            profile_id=payment.profile_id,
            target_type="payment",
            target_id=payment.id,
            details=justification,
            extra={"gateway": payment.gateway_name, "amount": str(payment.amount)},
        )

    async def apply_gateway_status(
        self,
        session: AsyncSession,
        actor: Actor,
        callback: GatewayCallback,
    ) -> AdminActionModel:
        """Reconcile an out-of-band gateway notification with the stored payment.

        Duplicates and regressions (e.g. ``processing`` after ``approved``)
        are refused, so replayed callbacks never double-confirm.
        """
        self._authorize_role(actor, GATEWAY_ROLE)
        if actor != Actor.gateway(callback.gateway):
            raise _deny(actor, f"callback for {callback.gateway} from another gateway")
        charge_id = _require_text(callback.charge_id, "charge_id")
        new_status = normalize(callback.gateway, callback.raw_status)

        payment = await self.students.get_payment_by_charge(session, callback.gateway, charge_id)
        if payment is None:
            raise NotFoundError(f"No {callback.gateway} payment with charge {charge_id}")
        previous = payment.status
        if not can_transition(previous, new_status):
            raise PreconditionError(
                f"Payment {payment.id} is {previous}, ignoring {new_status.value}"
            )

        values: dict[str, Any] = {"status": new_status.value}
        if new_status is PaymentStatus.APPROVED:
            values["confirmed_at"] = _now()
        payment = await self.students.conditional_update(
            session, PaymentModel, payment.id,
            expected={"status": previous},
            values=values,
        )
        return await self.audit.record_action(
            session, "payment_status_synced", actor,
            profile_id=payment.profile_id,
            target_type="payment",
            target_id=payment.id,
            extra={
                "gateway": callback.gateway,
                "charge_id": charge_id,
                "raw_status": callback.raw_status,
                "previous_status": previous,
                "status": new_status.value,
            },
        )

    # ── Admin accounts ──

    async def toggle_admin_active(
        self,
        session: AsyncSession,
        actor: Actor,
        admin_id: str,
        justification: str,
    ) -> AdminActionModel:
        await self._authorize_staff(session, actor, super_only=True)
        admin_id = _require_text(admin_id, "admin_id")
        justification = _require_text(justification, "justification")
        target = await self.admins.get(session, admin_id)
        if target is None:
            raise NotFoundError(f"Admin {admin_id} not found")
        if target.role == SUPER_ROLE:
            raise _deny(actor, "super-admin accounts cannot be toggled")

        previous = target.is_active
        target = await self.students.conditional_update(
            session, AdminUserModel, target.id,
            expected={"is_active": previous},
            values={"is_active": not previous},
        )
        return await self.audit.record_action(
            session,
            "admin_activated" if target.is_active else "admin_deactivated",
            actor,
            target_type="admin",
            target_id=target.id,
            details=justification,
            extra={"email": target.email, "role": target.role},
        )

    async def create_admin(
        self,
        session: AsyncSession,
        actor: Actor,
        auth_user_id: str,
        email: str,
        role: str,
        justification: str,
        full_name: str = "",
    ) -> AdminActionModel:
        await self._authorize_staff(session, actor, super_only=True)
        auth_user_id = _require_text(auth_user_id, "auth_user_id")
        email = _require_text(email, "email")
        justification = _require_text(justification, "justification")
        if await self.admins.get_by_auth_user(session, auth_user_id) is not None:
            raise PreconditionError(f"User {auth_user_id} already has an admin account")

        try:
            admin = await self.admins.create_admin(
                session, auth_user_id, email, role=role, full_name=full_name,
            )
        except IntegrityError as exc:
            raise ConflictError(f"Admin account for {email} already exists") from exc
        return await self.audit.record_action(
            session, "admin_created", actor,
            target_type="admin",
            target_id=admin.id,
            details=justification,
            extra={"email": admin.email, "role": admin.role, "auth_user_id": admin.auth_user_id},
        )

    # ── Gateway routing ──

    async def switch_active_gateway(
        self,
        session: AsyncSession,
        actor: Actor,
        gateway_name: str,
    ) -> AdminActionModel:
        """Route new charges through another gateway.

        One UPDATE flips every row at once, then the transaction checks that
        exactly one row ended up active. Existing payments keep the gateway
        they were charged through.
        """
        await self._authorize_staff(session, actor, super_only=True)
        gateway_name = _require_text(gateway_name, "gateway_name").lower()
        target = await self.gateways.get_gateway(session, gateway_name)
        if target is None:
            raise NotFoundError(f"Gateway '{gateway_name}' is not configured")
        if target.is_active:
            raise PreconditionError(f"Gateway '{gateway_name}' is already active")
        previous = await self.gateways.get_active_gateway(session)

        await session.execute(
            update(GatewayConfigModel)
            .values(
                is_active=case(
                    (GatewayConfigModel.gateway_name == gateway_name, True),
                    else_=False,
                ),
                updated_at=_now(),
            )
            .execution_options(synchronize_session=False)
        )
        active = (await session.execute(
            select(func.count())
            .select_from(GatewayConfigModel)
            .where(GatewayConfigModel.is_active.is_(True))
        )).scalar_one()
        target = await session.get(GatewayConfigModel, target.id, populate_existing=True)
        if active != 1 or not target.is_active:
            raise ConflictError("Gateway switch left the routing table inconsistent")
        if previous is not None:
            await session.get(GatewayConfigModel, previous.id, populate_existing=True)

        return await self.audit.record_action(
            session, "gateway_switched", actor,
            target_type="gateway",
            target_id=gateway_name,
            extra={"from": previous.gateway_name if previous else None, "to": gateway_name},
        )

    # ── Card production ──

    async def register_shipment(
        self,
        session: AsyncSession,
        actor: Actor,
        card_id: str,
        tracking_code: str,
    ) -> AdminActionModel:
        await self._authorize_staff(session, actor)
        card_id = _require_text(card_id, "card_id")
        tracking_code = _require_text(tracking_code, "tracking_code")
        card = await self._card(session, card_id)
        if card.shipping_status == ShippingStatus.DELIVERED.value:
            raise PreconditionError(f"Card {card_id} was already delivered")

        previous = card.shipping_status
        now = _now()
        card = await self.students.conditional_update(
            session, CardModel, card.id,
            expected={"shipping_status": previous},
            values={
                "shipping_status": ShippingStatus.SHIPPED.value,
                "shipping_code": tracking_code,
                "shipped_at": now,
            },
        )
        await session.execute(
            update(PrintRecordModel)
            .where(PrintRecordModel.card_id == card.id)
            .values(tracking_code=tracking_code, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return await self.audit.record_action(
            session, "card_shipped", actor,
            profile_id=card.profile_id,
            target_type="card",
            target_id=card.id,
            details=tracking_code,
            extra={"previous_shipping_status": previous},
        )

    async def print_batch(
        self,
        db: DatabaseManager,
        actor: Actor,
        card_ids: list[str],
    ) -> BatchResult:
        """Send cards to print, one transaction per card.

        Items are processed in order and fail independently: a card that is
        missing, already printed, or whose print manifest cannot be stored
        is reported and the rest of the batch continues. A refused batch
        comes back with ``success=False`` and no items.
        """
        batch = BatchResult(batch_id=generate_uuid())
        try:
            async with db.get_session() as session:
                await self._authorize_staff(session, actor)
            ids = list(dict.fromkeys(
                c.strip() for c in card_ids if isinstance(c, str) and c.strip()
            ))
            if not ids:
                raise ValidationError("At least one card must be selected")
        except (IdCardError, SQLAlchemyError) as exc:
            error = _as_domain_error(exc)
            logger.info(
                "Print batch refused",
                extra={"batch_id": batch.batch_id, "actor_id": actor.id, "code": error.code},
            )
            batch.success = False
            batch.error = TransitionErrorInfo(code=error.code, message=error.message)
            return batch

        for card_id in ids:
            try:
                async with db.get_session() as session:
                    record, action = await self._print_card(session, actor, card_id, batch.batch_id)
                batch.items.append(BatchItemResult(
                    card_id=card_id, success=True, print_id=record.id, action_id=action.id,
                ))
            except (IdCardError, SQLAlchemyError) as exc:
                exc = _as_domain_error(exc)
                logger.info(
                    "Print batch item failed",
                    extra={"batch_id": batch.batch_id, "card_id": card_id, "code": exc.code},
                )
                batch.items.append(BatchItemResult(
                    card_id=card_id,
                    success=False,
                    error=TransitionErrorInfo(code=exc.code, message=exc.message),
                ))

        logger.info(
            "Print batch finished",
            extra={
                "batch_id": batch.batch_id,
                "succeeded": len(batch.succeeded),
                "failed": len(batch.failed),
            },
        )
        return batch

    async def _print_card(
        self,
        session: AsyncSession,
        actor: Actor,
        card_id: str,
        batch_id: str,
    ) -> tuple[PrintRecordModel, AdminActionModel]:
        card = await self._card(session, card_id)
        if card.status != CardStatus.ACTIVE.value:
            raise PreconditionError(f"Card {card_id} is {card.status}")
        if not card.is_physical:
            raise PreconditionError(f"Card {card_id} has no physical copy")
        if card.shipping_status not in _PRINTABLE_SHIPPING_STATUSES:
            raise PreconditionError(f"Card {card_id} is already {card.shipping_status}")

        profile = await self._profile(session, card.profile_id)
        file_url = await self._store_manifest(batch_id, card, profile)

        record = PrintRecordModel(
            card_id=card.id,
            batch_id=batch_id,
            file_url=file_url,
            status=ShippingStatus.PRINTED.value,
            printed_by=actor.id,
        )
        session.add(record)
        await session.flush()
        card = await self.students.conditional_update(
            session, CardModel, card.id,
            expected={"shipping_status": card.shipping_status},
            values={"shipping_status": ShippingStatus.PRINTED.value},
        )
        action = await self.audit.record_action(
            session, "card_printed", actor,
            profile_id=card.profile_id,
            target_type="card",
            target_id=card.id,
            extra={"batch_id": batch_id, "print_id": record.id, "file_url": file_url},
        )
        return record, action

    async def _store_manifest(
        self, batch_id: str, card: CardModel, profile: ProfileModel
    ) -> str | None:
        if self.storage is None:
            return None
        manifest = {
            "batch_id": batch_id,
            "card_id": card.id,
            "card_number": card.card_number,
            "qr_code": card.qr_code,
            "valid_until": card.valid_until.isoformat(),
            "full_name": profile.full_name,
            "institution": profile.institution,
            "course": profile.course,
        }
        path = f"prints/{batch_id}/{card.id}.json"
        try:
            return await asyncio.wait_for(
                self.storage.upload(path, json.dumps(manifest).encode(), "application/json"),
                timeout=self.settings.external_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExternalDependencyError(f"Storage upload timed out: {path}") from exc

    # ── Applicant steps ──

    async def complete_profile(
        self,
        session: AsyncSession,
        actor: Actor,
        user_id: str,
        fields: dict[str, Any],
    ) -> AdminActionModel:
        profile = await self._authorize_applicant(session, actor, user_id)
        values: dict[str, Any] = {
            name: _require_text(fields.get(name), name) for name in _PROFILE_TEXT_FIELDS
        }
        cpf = _require_text(fields.get("cpf"), "cpf")
        if not validate_cpf(cpf):
            raise ValidationError("Invalid CPF")
        values["cpf"] = normalize_cpf(cpf)
        try:
            values["birth_date"] = parse_birth_date(_require_text(fields.get("birth_date"), "birth_date"))
        except ValueError as exc:
            raise ValidationError("birth_date must be an ISO date (YYYY-MM-DD)") from exc
        values["education_level"] = values["education_level"].lower()
        values["is_law_student"] = _require_flag(fields.get("is_law_student", False), "is_law_student")

        if profile is None:
            profile = await self.students.create_profile(session, user_id)
        elif profile.profile_completed:
            raise PreconditionError("Profile is already completed")

        profile = await self.students.conditional_update(
            session, ProfileModel, profile.id,
            expected={"profile_completed": False},
            values={**values, "profile_completed": True},
        )
        return await self.audit.record_action(
            session, "profile_completed", actor,
            profile_id=profile.id,
            target_type="profile",
            target_id=profile.id,
            extra={
                "education_level": profile.education_level,
                "is_law_student": profile.is_law_student,
            },
        )

    async def _applicant_profile(
        self, session: AsyncSession, actor: Actor, user_id: str
    ) -> ProfileModel:
        profile = await self._authorize_applicant(session, actor, user_id)
        if profile is None:
            raise NotFoundError(f"No profile for user {user_id}")
        return profile

    async def accept_terms(
        self, session: AsyncSession, actor: Actor, user_id: str
    ) -> AdminActionModel:
        profile = await self._applicant_profile(session, actor, user_id)
        if profile.terms_accepted:
            raise PreconditionError("Terms were already accepted")
        await self.students.conditional_update(
            session, ProfileModel, profile.id,
            expected={"terms_accepted": False},
            values={"terms_accepted": True},
        )
        return await self.audit.record_action(
            session, "terms_accepted", actor,
            profile_id=profile.id, target_type="profile", target_id=profile.id,
        )

    async def request_manual_review(
        self,
        session: AsyncSession,
        actor: Actor,
        user_id: str,
        notes: str | None = None,
    ) -> AdminActionModel:
        profile = await self._applicant_profile(session, actor, user_id)
        notes = _optional_text(notes, "notes")
        if profile.face_validated:
            raise PreconditionError("Face is already validated")
        if profile.manual_review_requested:
            raise PreconditionError("Manual review was already requested")
        await self.students.conditional_update(
            session, ProfileModel, profile.id,
            expected={"manual_review_requested": False},
            values={"manual_review_requested": True},
        )
        return await self.audit.record_action(
            session, "manual_review_requested", actor,
            profile_id=profile.id, target_type="profile", target_id=profile.id,
            details=notes,
        )

    async def select_plan(
        self,
        session: AsyncSession,
        actor: Actor,
        user_id: str,
        plan_ref: str,
    ) -> AdminActionModel:
        """Record the applicant's plan; card charges are priced from it.

        ``plan_ref`` is a plan id or code. The choice can change until a
        live card charge exists.
        """
        profile = await self._applicant_profile(session, actor, user_id)
        plan_ref = _require_text(plan_ref, "plan_id")
        if not profile.profile_completed:
            raise PreconditionError("Profile must be completed before choosing a plan")

        plan = await self.plans.get_plan(session, plan_ref)
        if plan is None:
            plan = await self.plans.get_plan_by_code(session, plan_ref)
        if plan is None or not plan.is_active:
            raise ValidationError(f"Unknown plan '{plan_ref}'")
        if plan.is_law and not is_qualifying_law_student(profile):
            raise PreconditionError("Law plans are only available to qualifying law students")
        if profile.plan_id == plan.id:
            raise PreconditionError(f"Plan '{plan.code}' is already selected")

        payments = await self.students.list_payments(session, profile.id)
        if any(
            p.purpose == PaymentPurpose.CARD.value and p.status in _PLAN_LOCKING_PAYMENT_STATUSES
            for p in payments
        ):
            raise PreconditionError("Plan cannot change once a card charge exists")

        previous = profile.plan_id
        await self.students.conditional_update(
            session, ProfileModel, profile.id,
            expected={"plan_id": previous},
            values={"plan_id": plan.id},
        )
        return await self.audit.record_action(
            session, "plan_selected", actor,
            profile_id=profile.id,
            target_type="plan",
            target_id=plan.id,
            extra={
                "code": plan.code,
                "price": str(plan.price),
                "is_physical": plan.is_physical,
                "previous_plan_id": previous,
            },
        )

    async def issue_card(
        self,
        session: AsyncSession,
        actor: Actor,
        user_id: str,
        digital_card_url: str,
        is_physical: bool = False,
    ) -> AdminActionModel:
        """Create the applicant's card once every precondition holds at once."""
        profile = await self._applicant_profile(session, actor, user_id)
        digital_card_url = _require_text(digital_card_url, "digital_card_url")

        if await self.students.get_active_card(session, profile.id) is not None:
            raise PreconditionError("An active card already exists")
        snapshot = await self.students.load_snapshot(session, profile)
        state = resolve(snapshot)
        if state is not OnboardingState.REVIEW_DATA:
            raise PreconditionError(f"Card cannot be issued while onboarding is at {state.value}")

        payments = await self.students.list_payments(session, profile.id)
        payment = next(
            p for p in payments
            if p.purpose == PaymentPurpose.CARD.value and p.status == PaymentStatus.APPROVED.value
        )
        if payment.plan_id is not None:
            plan = await self.plans.get_plan(session, payment.plan_id)
            if is_physical and not (plan and plan.is_physical):
                raise PreconditionError("The paid plan does not include a physical card")
            is_physical = bool(plan and plan.is_physical)
        card_number = generate_card_number(_now().date())
        card = CardModel(
            profile_id=profile.id,
            payment_id=payment.id,
            card_number=card_number,
            qr_code=qr_payload(card_number, self.settings.current_hmac_key),
            status=CardStatus.ACTIVE.value,
            digital_card_url=digital_card_url,
            is_physical=bool(is_physical),
            valid_until=self.students.card_valid_until(),
            shipping_status=ShippingStatus.PENDING.value if is_physical else None,
        )
        session.add(card)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError("A card was issued concurrently") from exc
        return await self.audit.record_action(
            session, "card_issued", actor,
            profile_id=profile.id,
            target_type="card",
            target_id=card.id,
            extra={
                "card_number": card.card_number,
                "payment_id": payment.id,
                "is_physical": card.is_physical,
                "valid_until": card.valid_until.isoformat(),
            },
        )

    async def upgrade_card_to_physical(
        self,
        session: AsyncSession,
        actor: Actor,
        user_id: str,
        payment_id: str,
    ) -> AdminActionModel:
        """Add a physical copy to an active digital card, paid by an upgrade charge.

        Each upgrade payment can be spent on one card only.
        """
        profile = await self._applicant_profile(session, actor, user_id)
        payment_id = _require_text(payment_id, "payment_id")
        card = await self.students.get_active_card(session, profile.id)
        if card is None:
            raise PreconditionError("No active card to upgrade")
        if card.is_physical:
            raise PreconditionError(f"Card {card.id} is already physical")

        payment = await self._payment(session, payment_id)
        if payment.profile_id != profile.id:
            raise _deny(actor, "payment belongs to another profile")
        if payment.purpose != PaymentPurpose.PHYSICAL_UPGRADE.value:
            raise ValidationError(f"Payment {payment_id} is not a physical upgrade charge")
        if payment.status != PaymentStatus.APPROVED.value:
            raise PreconditionError(f"Payment {payment_id} is {payment.status}")
        spent = (await session.execute(
            select(CardModel.id).where(CardModel.upgrade_payment_id == payment.id)
        )).first()
        if spent is not None:
            raise PreconditionError(f"Payment {payment_id} was already used for an upgrade")

        card = await self.students.conditional_update(
            session, CardModel, card.id,
            expected={"is_physical": False},
            values={
                "is_physical": True,
                "shipping_status": ShippingStatus.PENDING.value,
                "upgrade_payment_id": payment.id,
            },
        )
        return await self.audit.record_action(
            session, "card_upgraded_to_physical", actor,
            profile_id=profile.id,
            target_type="card",
            target_id=card.id,
            extra={"payment_id": payment.id, "amount": str(payment.amount)},
        )

    # ── Generic boundary ──

    async def apply_transition(
        self,
        session: AsyncSession,
        name: str,
        actor: Actor,
        target: str | None,
        payload: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Run a transition by name and report the outcome as a value.

        Domain and database errors never escape: the session is rolled back
        and the error comes back inside the result.
        """
        handler = self._handlers.get(name)
        try:
            if handler is None:
                raise ValidationError(f"Unknown transition '{name}'")
            if payload is None:
                payload = {}
            if not isinstance(payload, dict):
                raise ValidationError("payload must be an object")
            action = await handler(session, actor, target, payload)
        except (IdCardError, SQLAlchemyError) as exc:
            exc = _as_domain_error(exc)
            await session.rollback()
            logger.info(
                "Transition refused",
                extra={"transition": name, "actor_id": actor.id, "code": exc.code, "reason": exc.message},
            )
            return TransitionResult(
                success=False,
                error=TransitionErrorInfo(code=exc.code, message=exc.message),
            )
        logger.info(
            "Transition applied",
            extra={"transition": name, "actor_id": actor.id, "action_id": action.id},
        )
        return TransitionResult(success=True, action=AuditActionResponse.model_validate(action))

    # Payload adapters for apply_transition. ``target`` is the id of the
    # entity the transition acts on.

    async def _do_approve_document(self, session, actor, target, payload):
        return await self.approve_document(session, actor, target, notes=payload.get("notes"))

    async def _do_reject_document(self, session, actor, target, payload):
        return await self.reject_document(
            session, actor, target, payload.get("reason_id"), payload.get("notes"),
        )

    async def _do_override_face_validation(self, session, actor, target, payload):
        return await self.override_face_validation(
            session, actor, target, payload.get("justification"),
        )

    async def _do_mark_payment_paid(self, session, actor, target, payload):
        return await self.mark_payment_paid(
            session, actor, target, payload.get("justification"),
            receipt_url=payload.get("receipt_url"),
        )

    async def _do_refund_payment(self, session, actor, target, payload):
        return await self.refund_payment(session, actor, target, payload.get("justification"))

    async def _do_toggle_admin_active(self, session, actor, target, payload):
        return await self.toggle_admin_active(session, actor, target, payload.get("justification"))

    async def _do_create_admin(self, session, actor, target, payload):
        return await self.create_admin(
            session, actor, target, payload.get("email"),
            role=_optional_text(payload.get("role"), "role") or "admin",
            justification=payload.get("justification"),
            full_name=_optional_text(payload.get("full_name"), "full_name") or "",
        )

    async def _do_switch_active_gateway(self, session, actor, target, payload):
        return await self.switch_active_gateway(session, actor, target)

    async def _do_register_shipment(self, session, actor, target, payload):
        return await self.register_shipment(session, actor, target, payload.get("tracking_code"))

    async def _do_apply_gateway_status(self, session, actor, target, payload):
        callback = GatewayCallback(
            gateway=str(payload.get("gateway") or ""),
            charge_id=str(target or ""),
            raw_status=str(payload.get("raw_status") or ""),
        )
        return await self.apply_gateway_status(session, actor, callback)

    async def _do_record_face_validation(self, session, actor, target, payload):
        return await self.record_face_validation(
            session, actor, target,
            similarity_rg=payload.get("similarity_rg"),
            similarity_photo=payload.get("similarity_photo"),
            passed=payload.get("passed", False),
            details=payload.get("details"),
        )

    async def _do_complete_profile(self, session, actor, target, payload):
        return await self.complete_profile(session, actor, target or actor.id, payload)

    async def _do_accept_terms(self, session, actor, target, payload):
        return await self.accept_terms(session, actor, target or actor.id)

    async def _do_request_manual_review(self, session, actor, target, payload):
        return await self.request_manual_review(
            session, actor, target or actor.id, notes=payload.get("notes"),
        )

    async def _do_select_plan(self, session, actor, target, payload):
        return await self.select_plan(session, actor, target or actor.id, payload.get("plan_id"))

    async def _do_issue_card(self, session, actor, target, payload):
        return await self.issue_card(
            session, actor, target or actor.id,
            payload.get("digital_card_url"),
            is_physical=_require_flag(payload.get("is_physical", False), "is_physical"),
        )

    async def _do_upgrade_card_to_physical(self, session, actor, target, payload):
        return await self.upgrade_card_to_physical(
            session, actor, target or actor.id, payload.get("payment_id"),
        )
