"""SQLAlchemy models for gateway routing configuration and the plan catalogue."""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from idcard_engine.common.models import Base, TimestampMixin, generate_uuid


class GatewayConfigModel(Base, TimestampMixin):
    __tablename__ = "payment_gateway_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    gateway_name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sandbox_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_card: Mapped[bool] = mapped_column(Boolean, default=True)
    supports_pix: Mapped[bool] = mapped_column(Boolean, default=True)


class PlanModel(Base, TimestampMixin):
    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_physical: Mapped[bool] = mapped_column(Boolean, default=False)
    # Law plans carry the OAB student seal and are offered to qualifying law students only.
    is_law: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
