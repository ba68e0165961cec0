"""SQLAlchemy models for applicant facts: profile, documents, face checks, cards."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from idcard_engine.common.models import Base, TimestampMixin, generate_uuid


class ProfileModel(Base, TimestampMixin):
    __tablename__ = "student_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), default="")
    cpf: Mapped[str] = mapped_column(String(14), default="", index=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    institution: Mapped[str] = mapped_column(String(255), default="")
    course: Mapped[str] = mapped_column(String(255), default="")
    education_level: Mapped[str] = mapped_column(String(50), default="")
    plan_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    is_law_student: Mapped[bool] = mapped_column(Boolean, default=False)
    profile_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_review_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    face_validated: Mapped[bool] = mapped_column(Boolean, default=False)


class PaymentModel(Base, TimestampMixin):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payment_gateway_charge", "gateway_name", "gateway_charge_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_profiles.id"), nullable=False, index=True
    )
    method: Mapped[str] = mapped_column(String(20), nullable=False, default="pix")
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    gateway_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)


class RejectionReasonModel(Base, TimestampMixin):
    __tablename__ = "rejection_reasons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class DocumentModel(Base, TimestampMixin):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_profiles.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    file_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    rejection_reason_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("rejection_reasons.id"), nullable=True
    )
    rejection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    validated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class FaceValidationModel(Base, TimestampMixin):
    __tablename__ = "face_validations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_profiles.id"), nullable=False, index=True
    )
    similarity_rg: Mapped[float] = mapped_column(Float, default=0.0)
    similarity_photo: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict] = mapped_column(JSON, default=dict)


class CardModel(Base, TimestampMixin):
    __tablename__ = "student_cards"
    __table_args__ = (
        # At most one active card per profile.
        Index(
            "uq_card_active_profile",
            "profile_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_profiles.id"), nullable=False, index=True
    )
    payment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payments.id"), nullable=False
    )
    card_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    qr_code: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    digital_card_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    is_physical: Mapped[bool] = mapped_column(Boolean, default=False)
    upgrade_payment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("payments.id"), nullable=True
    )
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)
    shipping_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    shipping_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PrintRecordModel(Base, TimestampMixin):
    __tablename__ = "card_prints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_cards.id"), nullable=False, index=True
    )
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    file_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="printed")
    tracking_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    printed_by: Mapped[str] = mapped_column(String(255), nullable=False)
