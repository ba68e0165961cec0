"""Fact store accessors — typed reads and guarded writes for applicant facts."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.common.config import IdCardSettings
from idcard_engine.common.exceptions import (
    ConflictError,
    ExternalDependencyError,
    ValidationError,
)
from idcard_engine.eligibility.resolver import (
    CardFacts,
    DocumentFacts,
    PaymentFacts,
    ProfileFacts,
    Snapshot,
)
from idcard_engine.students.enums import CardStatus, DocumentStatus, DocumentType, PaymentPurpose
from idcard_engine.students.models import (
    CardModel,
    DocumentModel,
    FaceValidationModel,
    PaymentModel,
    ProfileModel,
    RejectionReasonModel,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

_DOCUMENT_TYPES = {t.value for t in DocumentType}


class StudentService:
    """Reads and writes for Profile, Payment, Document, FaceValidation and Card."""

    def __init__(self, settings: IdCardSettings, storage=None):
        self.settings = settings
        self.storage = storage

    # ── Profiles ──

    async def create_profile(
        self, session: AsyncSession, user_id: str, **fields: Any
    ) -> ProfileModel:
        if not user_id.strip():
            raise ValidationError("user_id is required")
        profile = ProfileModel(
            user_id=user_id.strip(),
            full_name=fields.get("full_name", ""),
            cpf=fields.get("cpf", ""),
            birth_date=fields.get("birth_date"),
            institution=fields.get("institution", ""),
            course=fields.get("course", ""),
            education_level=fields.get("education_level", ""),
            is_law_student=fields.get("is_law_student", False),
        )
        session.add(profile)
        await session.flush()
        return profile

    async def get_profile(self, session: AsyncSession, profile_id: str) -> ProfileModel | None:
        return await session.get(ProfileModel, profile_id)

    async def get_profile_by_user(
        self, session: AsyncSession, user_id: str
    ) -> ProfileModel | None:
        result = await session.execute(
            select(ProfileModel).where(ProfileModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    # ── Payments ──

    async def list_payments(self, session: AsyncSession, profile_id: str) -> list[PaymentModel]:
        result = await session.execute(
            select(PaymentModel)
            .where(PaymentModel.profile_id == profile_id)
            .order_by(PaymentModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_payment(self, session: AsyncSession, payment_id: str) -> PaymentModel | None:
        return await session.get(PaymentModel, payment_id)

    async def get_payment_by_charge(
        self, session: AsyncSession, gateway_name: str, charge_id: str
    ) -> PaymentModel | None:
        result = await session.execute(
            select(PaymentModel).where(
                PaymentModel.gateway_name == gateway_name,
                PaymentModel.gateway_charge_id == charge_id,
            )
        )
        return result.scalar_one_or_none()

    # ── Documents ──

    async def add_document(
        self,
        session: AsyncSession,
        profile_id: str,
        doc_type: str,
        file_url: str,
    ) -> DocumentModel:
        """Register an uploaded file. New uploads always start pending."""
        if doc_type not in _DOCUMENT_TYPES:
            raise ValidationError(f"Unknown document type '{doc_type}'")
        if not file_url.strip():
            raise ValidationError("file_url is required")
        document = DocumentModel(
            profile_id=profile_id,
            type=doc_type,
            file_url=file_url.strip(),
            status=DocumentStatus.PENDING.value,
        )
        session.add(document)
        await session.flush()
        return document

    async def get_document(self, session: AsyncSession, document_id: str) -> DocumentModel | None:
        return await session.get(DocumentModel, document_id)

    async def list_documents(
        self,
        session: AsyncSession,
        profile_id: str,
        status: str | None = None,
    ) -> list[DocumentModel]:
        query = select(DocumentModel).where(DocumentModel.profile_id == profile_id)
        if status:
            query = query.where(DocumentModel.status == status)
        result = await session.execute(query.order_by(DocumentModel.created_at.desc()))
        return list(result.scalars().all())

    async def create_rejection_reason(
        self, session: AsyncSession, document_type: str, reason: str, description: str = ""
    ) -> RejectionReasonModel:
        if document_type not in _DOCUMENT_TYPES:
            raise ValidationError(f"Unknown document type '{document_type}'")
        row = RejectionReasonModel(
            document_type=document_type, reason=reason, description=description,
        )
        session.add(row)
        await session.flush()
        return row

    async def get_rejection_reason(
        self, session: AsyncSession, reason_id: str
    ) -> RejectionReasonModel | None:
        return await session.get(RejectionReasonModel, reason_id)

    async def list_rejection_reasons(
        self, session: AsyncSession, document_type: str | None = None
    ) -> list[RejectionReasonModel]:
        query = select(RejectionReasonModel).where(RejectionReasonModel.is_active.is_(True))
        if document_type:
            query = query.where(RejectionReasonModel.document_type == document_type)
        result = await session.execute(query.order_by(RejectionReasonModel.reason))
        return list(result.scalars().all())

    # ── Face validation ──

    async def list_face_validations(
        self, session: AsyncSession, profile_id: str
    ) -> list[FaceValidationModel]:
        """Attempts newest first; the first one is authoritative."""
        result = await session.execute(
            select(FaceValidationModel)
            .where(FaceValidationModel.profile_id == profile_id)
            .order_by(FaceValidationModel.created_at.desc())
        )
        return list(result.scalars().all())

    # ── Cards ──

    async def get_card(self, session: AsyncSession, card_id: str) -> CardModel | None:
        return await session.get(CardModel, card_id)

    async def get_active_card(self, session: AsyncSession, profile_id: str) -> CardModel | None:
        result = await session.execute(
            select(CardModel).where(
                CardModel.profile_id == profile_id,
                CardModel.status == CardStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    def card_valid_until(self, today: date | None = None) -> date:
        today = today or datetime.now(timezone.utc).date()
        return today + timedelta(days=self.settings.card_validity_days)

    # ── Snapshot ──

    async def load_snapshot(self, session: AsyncSession, profile: ProfileModel | None) -> Snapshot:
        if profile is None:
            return Snapshot()
        payments = await self.list_payments(session, profile.id)
        documents = await self.list_documents(session, profile.id)
        card = await self.get_active_card(session, profile.id)
        return Snapshot(
            profile=ProfileFacts(
                profile_completed=bool(profile.profile_completed),
                terms_accepted=bool(profile.terms_accepted),
                is_law_student=bool(profile.is_law_student),
                education_level=profile.education_level or "",
                manual_review_requested=bool(profile.manual_review_requested),
                face_validated=bool(profile.face_validated),
                plan_selected=profile.plan_id is not None,
            ),
            payments=tuple(
                PaymentFacts(status=p.status) for p in payments
                if p.purpose == PaymentPurpose.CARD.value
            ),
            documents=tuple(DocumentFacts(type=d.type, status=d.status) for d in documents),
            card=CardFacts(status=card.status, digital_card_url=card.digital_card_url) if card else None,
        )

    async def load_snapshot_for_user(self, session: AsyncSession, user_id: str) -> Snapshot:
        profile = await self.get_profile_by_user(session, user_id)
        return await self.load_snapshot(session, profile)

    # ── Guarded writes ──

    async def conditional_update(
        self,
        session: AsyncSession,
        model: type[ModelT],
        row_id: str,
        expected: dict[str, Any],
        values: dict[str, Any],
    ) -> ModelT:
        """UPDATE one row only if it still holds the expected values.

        Raises ConflictError when another writer got there first; the caller's
        session is then rolled back, so nothing of the transition persists.
        """
        stmt = update(model).where(model.id == row_id)
        for column, value in expected.items():
            stmt = stmt.where(getattr(model, column) == value)
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        result = await session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "Conditional update lost",
                extra={"table": model.__tablename__, "row_id": row_id},
            )
            raise ConflictError(
                f"{model.__tablename__} row {row_id} changed concurrently, reload and retry"
            )
        return await session.get(model, row_id, populate_existing=True)

    # ── Maintenance ──

    async def purge_rejected_documents(
        self,
        session: AsyncSession,
        older_than_days: int | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """Delete rejected documents past the retention window.

        Runs in bounded chunks; an item whose stored file cannot be removed is
        kept and reported so the next run retries it.
        """
        days = older_than_days if older_than_days is not None else self.settings.rejected_document_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await session.execute(
            select(DocumentModel)
            .where(
                DocumentModel.status == DocumentStatus.REJECTED.value,
                DocumentModel.created_at < cutoff,
            )
            .limit(limit or self.settings.purge_batch_size)
        )
        documents = list(result.scalars().all())

        report: dict[str, Any] = {"deleted_files": 0, "deleted_records": 0, "errors": []}
        for document in documents:
            if self.storage is not None and document.file_url:
                try:
                    await self.storage.delete(document.file_url)
                    report["deleted_files"] += 1
                except ExternalDependencyError as exc:
                    report["errors"].append(f"{document.id}: {exc.message}")
                    continue
            await session.delete(document)
            report["deleted_records"] += 1
        await session.flush()
        logger.info("Rejected documents purged", extra=report)
        return report
