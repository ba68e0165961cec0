"""Eligibility resolver — derive the applicant's onboarding step from facts.

No record stores "the current step". It is recomputed from a snapshot of the
applicant's profile, payments, documents and card on every read, so every
consumer (navigation, dashboards, card issuance) agrees on the same answer.

Everything here is pure: no I/O, no clock, no mutation.
"""

from dataclasses import dataclass, field
from enum import Enum

from idcard_engine.students.enums import (
    QUALIFYING_LAW_LEVELS,
    REQUIRED_DOCUMENT_TYPES,
    CardStatus,
    DocumentStatus,
    PaymentStatus,
)


class OnboardingState(str, Enum):
    MANUAL_REVIEW_PENDING = "manual_review_pending"
    COMPLETE_PROFILE = "complete_profile"
    CHOOSE_PLAN = "choose_plan"
    PAYMENT = "payment"
    UPLOAD_DOCUMENTS = "upload_documents"
    REVIEW_DATA = "review_data"
    COMPLETED = "completed"


STATE_ROUTES: dict[OnboardingState, str] = {
    OnboardingState.MANUAL_REVIEW_PENDING: "/aguardando-aprovacao",
    OnboardingState.COMPLETE_PROFILE: "/complete-profile",
    OnboardingState.CHOOSE_PLAN: "/escolher-plano",
    OnboardingState.PAYMENT: "/pagamento",
    OnboardingState.UPLOAD_DOCUMENTS: "/upload-documentos",
    OnboardingState.REVIEW_DATA: "/gerar-carteirinha",
    OnboardingState.COMPLETED: "/carteirinha",
}

MILESTONES: tuple[str, ...] = ("profile", "payment", "documents", "card")


# ── Snapshot ──

@dataclass(frozen=True)
class ProfileFacts:
    profile_completed: bool = False
    terms_accepted: bool = False
    is_law_student: bool = False
    education_level: str = ""
    manual_review_requested: bool = False
    face_validated: bool = False
    plan_selected: bool = False


@dataclass(frozen=True)
class PaymentFacts:
    status: str


@dataclass(frozen=True)
class DocumentFacts:
    type: str
    status: str


@dataclass(frozen=True)
class CardFacts:
    status: str
    digital_card_url: str | None = None


@dataclass(frozen=True)
class Snapshot:
    """Facts about one applicant at one point in time."""
    profile: ProfileFacts | None = None
    payments: tuple[PaymentFacts, ...] = ()
    documents: tuple[DocumentFacts, ...] = ()
    card: CardFacts | None = None


@dataclass(frozen=True)
class Progress:
    milestone_index: int
    percentage: float
    milestones: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class Resolution:
    state: OnboardingState
    route: str
    progress: Progress


# ── Predicates ──

def has_approved_payment(snapshot: Snapshot) -> bool:
    return any(p.status == PaymentStatus.APPROVED.value for p in snapshot.payments)


def approved_document_types(snapshot: Snapshot) -> frozenset[str]:
    return frozenset(
        d.type for d in snapshot.documents
        if d.status == DocumentStatus.APPROVED.value
    )


def documents_complete(snapshot: Snapshot) -> bool:
    """Every required slot holds an approved document.

    Counted per distinct type: two approved uploads of the same type fill
    one slot, not two.
    """
    return REQUIRED_DOCUMENT_TYPES <= approved_document_types(snapshot)


def has_issued_card(snapshot: Snapshot) -> bool:
    card = snapshot.card
    return (
        card is not None
        and card.status == CardStatus.ACTIVE.value
        and bool(card.digital_card_url)
    )


def is_qualifying_law_student(profile: ProfileFacts) -> bool:
    return profile.is_law_student and profile.education_level in QUALIFYING_LAW_LEVELS


def _ready_for_card(snapshot: Snapshot) -> bool:
    profile = snapshot.profile
    return (
        profile is not None
        and documents_complete(snapshot)
        and profile.face_validated
        and profile.terms_accepted
    )


# ── Resolution ──

def resolve(snapshot: Snapshot) -> OnboardingState:
    """Map a snapshot to exactly one onboarding state (first match wins)."""
    profile = snapshot.profile
    if profile is None:
        return OnboardingState.COMPLETE_PROFILE

    if profile.manual_review_requested and not profile.face_validated:
        return OnboardingState.MANUAL_REVIEW_PENDING

    if not profile.profile_completed:
        return OnboardingState.COMPLETE_PROFILE

    if not has_approved_payment(snapshot):
        # Qualifying law students pick a plan first; once picked they pay like everyone else.
        if is_qualifying_law_student(profile) and not profile.plan_selected:
            return OnboardingState.CHOOSE_PLAN
        return OnboardingState.PAYMENT

    if not _ready_for_card(snapshot):
        return OnboardingState.UPLOAD_DOCUMENTS

    if not has_issued_card(snapshot):
        return OnboardingState.REVIEW_DATA

    return OnboardingState.COMPLETED


def progress(snapshot: Snapshot) -> Progress:
    """Completion over the four milestones.

    The index counts satisfied milestones from the start of the sequence and
    stops at the first unmet one, so it can only grow as facts accumulate.
    """
    profile = snapshot.profile
    reached = {
        "profile": profile is not None and profile.profile_completed,
        "payment": has_approved_payment(snapshot),
        "documents": _ready_for_card(snapshot),
        "card": has_issued_card(snapshot),
    }
    index = 0
    for name in MILESTONES:
        if not reached[name]:
            break
        index += 1
    return Progress(
        milestone_index=index,
        percentage=round(index / len(MILESTONES) * 100, 2),
        milestones=reached,
    )


def canonical_route(state: OnboardingState) -> str:
    return STATE_ROUTES[state]


def evaluate(snapshot: Snapshot) -> Resolution:
    state = resolve(snapshot)
    return Resolution(state=state, route=canonical_route(state), progress=progress(snapshot))
