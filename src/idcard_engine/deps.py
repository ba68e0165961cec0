"""Dependency injection singletons for IDCard-Engine."""

from idcard_engine.common.config import get_settings
from idcard_engine.common.database import DatabaseManager
from idcard_engine.admins.service import AdminService
from idcard_engine.audit.service import AuditService
from idcard_engine.navigation.guard import NavigationGuard
from idcard_engine.payments.service import GatewayService, PaymentService, PlanService
from idcard_engine.storage.client import HttpObjectStorage
from idcard_engine.students.service import StudentService
from idcard_engine.transitions.authority import TransitionAuthority

_db: DatabaseManager | None = None
_storage: HttpObjectStorage | None = None
_audit: AuditService | None = None
_admins: AdminService | None = None
_students: StudentService | None = None
_gateways: GatewayService | None = None
_plans: PlanService | None = None
_payments: PaymentService | None = None
_authority: TransitionAuthority | None = None
_guard: NavigationGuard | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_storage() -> HttpObjectStorage | None:
    """Object storage client, or None when no bucket is configured."""
    global _storage
    settings = get_settings()
    if _storage is None and settings.storage_base_url:
        _storage = HttpObjectStorage(
            settings.storage_base_url,
            token=settings.storage_token,
            timeout=settings.external_timeout,
        )
    return _storage


def get_audit_service() -> AuditService:
    global _audit
    if _audit is None:
        _audit = AuditService(get_settings())
    return _audit


def get_admin_service() -> AdminService:
    global _admins
    if _admins is None:
        _admins = AdminService()
    return _admins


def get_student_service() -> StudentService:
    global _students
    if _students is None:
        _students = StudentService(get_settings(), storage=get_storage())
    return _students


def get_gateway_service() -> GatewayService:
    global _gateways
    if _gateways is None:
        _gateways = GatewayService()
    return _gateways


def get_plan_service() -> PlanService:
    global _plans
    if _plans is None:
        _plans = PlanService()
    return _plans


def get_payment_service() -> PaymentService:
    global _payments
    if _payments is None:
        _payments = PaymentService(
            get_settings(),
            get_gateway_service(),
            audit_service=get_audit_service(),
            plan_service=get_plan_service(),
        )
    return _payments


def get_transition_authority() -> TransitionAuthority:
    global _authority
    if _authority is None:
        _authority = TransitionAuthority(
            get_settings(),
            get_student_service(),
            get_admin_service(),
            get_audit_service(),
            gateways=get_gateway_service(),
            storage=get_storage(),
            plans=get_plan_service(),
        )
    return _authority


def get_navigation_guard() -> NavigationGuard:
    global _guard
    if _guard is None:
        _guard = NavigationGuard(get_student_service(), get_settings().snapshot_timeout)
    return _guard


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _storage, _audit, _admins, _students, _gateways, _plans, _payments, _authority, _guard
    _db = None
    _storage = None
    _audit = None
    _admins = None
    _students = None
    _gateways = None
    _plans = None
    _payments = None
    _authority = None
    _guard = None
