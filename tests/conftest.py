"""Shared test fixtures for IDCard-Engine."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from idcard_engine.admins.models import AdminUserModel
from idcard_engine.admins.service import AdminService
from idcard_engine.audit.service import AuditService
from idcard_engine.common.config import IdCardSettings
from idcard_engine.common.database import DatabaseManager
from idcard_engine.common.security import Actor
from idcard_engine.payments.models import GatewayConfigModel, PlanModel
from idcard_engine.payments.service import GatewayService, PlanService
from idcard_engine.students.card_codes import generate_card_number
from idcard_engine.students.models import (
    CardModel,
    DocumentModel,
    PaymentModel,
    ProfileModel,
    RejectionReasonModel,
)
from idcard_engine.students.service import StudentService
from idcard_engine.transitions.authority import TransitionAuthority


HMAC_KEY = "test-hmac-key-for-unit-tests"
API_KEY = "test-service-api-key"
REQUIRED_TYPES = ("rg", "endereco", "matricula", "foto")


def make_settings(**overrides) -> IdCardSettings:
    defaults = {"hmac_key": HMAC_KEY, "api_key": API_KEY, "db_url": "sqlite+aiosqlite://"}
    defaults.update(overrides)
    return IdCardSettings(**defaults)


class Seeder:
    """Writes fixture rows directly, bypassing the Transition Authority."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def add(self, row):
        async with self.db.get_session() as session:
            session.add(row)
        return row

    async def admin(self, role: str = "admin", active: bool = True) -> tuple[AdminUserModel, Actor]:
        n = self._next()
        admin = await self.add(AdminUserModel(
            auth_user_id=f"auth-{role}-{n}",
            email=f"{role}{n}@example.com",
            full_name=f"{role.title()} {n}",
            role=role,
            is_active=active,
        ))
        return admin, Actor(id=admin.auth_user_id, role=role)

    async def profile(
        self,
        user_id: str | None = None,
        completed: bool = True,
        terms: bool = False,
        face: bool = False,
        law: bool = False,
        level: str = "graduacao",
        manual_review: bool = False,
        plan: PlanModel | None = None,
    ) -> ProfileModel:
        n = self._next()
        return await self.add(ProfileModel(
            user_id=user_id or f"user-{n}",
            full_name=f"Student {n}",
            cpf="52998224725",
            birth_date=date(2000, 1, 1),
            institution="UFMG",
            course="Direito" if law else "Engenharia",
            education_level=level,
            is_law_student=law,
            profile_completed=completed,
            terms_accepted=terms,
            face_validated=face,
            manual_review_requested=manual_review,
            plan_id=plan.id if plan else None,
        ))

    async def payment(
        self,
        profile: ProfileModel,
        status: str = "approved",
        gateway: str = "pagbank",
        charge_id: str | None = None,
        purpose: str = "card",
        plan: PlanModel | None = None,
        amount: Decimal = Decimal("29.90"),
    ) -> PaymentModel:
        n = self._next()
        return await self.add(PaymentModel(
            profile_id=profile.id,
            method="pix",
            amount=amount,
            purpose=purpose,
            plan_id=plan.id if plan else None,
            gateway_name=gateway,
            gateway_charge_id=charge_id or f"charge-{n}",
            status=status,
        ))

    async def document(
        self, profile: ProfileModel, doc_type: str = "rg", status: str = "pending"
    ) -> DocumentModel:
        return await self.add(DocumentModel(
            profile_id=profile.id,
            type=doc_type,
            file_url=f"https://storage.test/docs/{profile.id}/{doc_type}-{self._next()}.jpg",
            status=status,
        ))

    async def reason(self, document_type: str = "rg", reason: str = "Ilegível") -> RejectionReasonModel:
        return await self.add(RejectionReasonModel(document_type=document_type, reason=reason))

    async def card(
        self,
        profile: ProfileModel,
        payment: PaymentModel,
        physical: bool = True,
        status: str = "active",
        shipping_status: str | None = "pending",
        url: str | None = "https://storage.test/cards/card.png",
    ) -> CardModel:
        return await self.add(CardModel(
            profile_id=profile.id,
            payment_id=payment.id,
            card_number=generate_card_number(date.today()),
            qr_code="qr",
            status=status,
            digital_card_url=url,
            is_physical=physical,
            valid_until=date.today() + timedelta(days=365),
            shipping_status=shipping_status if physical else None,
        ))

    async def plan(
        self,
        code: str = "geral_digital",
        price: Decimal = Decimal("29.90"),
        physical: bool = False,
        law: bool = False,
        active: bool = True,
    ) -> PlanModel:
        return await self.add(PlanModel(
            code=code, name=code.replace("_", " ").title(), price=price,
            is_physical=physical, is_law=law, is_active=active,
        ))

    async def gateways(self, active: str = "pagbank") -> list[GatewayConfigModel]:
        rows = []
        for name in ("efi", "pagbank", "pagseguro"):
            rows.append(await self.add(GatewayConfigModel(gateway_name=name, is_active=name == active)))
        return rows

    async def ready_for_card(self, user_id: str | None = None) -> tuple[ProfileModel, PaymentModel]:
        """An applicant with every card precondition satisfied and no card yet."""
        profile = await self.profile(user_id=user_id, terms=True, face=True)
        payment = await self.payment(profile)
        for doc_type in REQUIRED_TYPES:
            await self.document(profile, doc_type, status="approved")
        return profile, payment


@pytest.fixture
def hmac_key():
    return HMAC_KEY


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def student_svc(settings):
    return StudentService(settings)


@pytest.fixture
def admin_svc():
    return AdminService()


@pytest.fixture
def audit_svc(settings):
    return AuditService(settings)


@pytest.fixture
def gateway_svc():
    return GatewayService()


@pytest.fixture
def plan_svc():
    return PlanService()


@pytest.fixture
def authority(settings, student_svc, admin_svc, audit_svc, gateway_svc, plan_svc):
    return TransitionAuthority(
        settings, student_svc, admin_svc, audit_svc, gateways=gateway_svc, plans=plan_svc,
    )


@pytest.fixture
def app(monkeypatch):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("IDCARD_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("IDCARD_HMAC_KEY", HMAC_KEY)
    monkeypatch.setenv("IDCARD_API_KEY", API_KEY)
    monkeypatch.setenv("IDCARD_GATEWAY_WEBHOOK_SECRETS", '{"efi": "efi-webhook-secret"}')

    # Clear caches and singletons so new env vars take effect
    from idcard_engine.common.config import get_settings
    get_settings.cache_clear()

    from idcard_engine.deps import reset_singletons
    reset_singletons()

    from idcard_engine.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from idcard_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def app_seed(client):
    from idcard_engine.deps import get_db
    return Seeder(get_db())


@pytest.fixture
def service_headers():
    return {"X-IdCard-Api-Key": API_KEY}


def actor_headers(actor: Actor) -> dict[str, str]:
    return {"X-IdCard-Api-Key": API_KEY, "X-Actor-Id": actor.id, "X-Actor-Role": actor.role}


@pytest.fixture
def headers_for():
    return actor_headers


@pytest.fixture
def make_seeder():
    """Seeder factory for tests that bring their own database."""
    return Seeder
