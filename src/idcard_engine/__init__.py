"""IDCard-Engine: student ID card onboarding state and review transitions."""

from idcard_engine.eligibility.resolver import (
    OnboardingState,
    Snapshot,
    canonical_route,
    evaluate,
    progress,
    resolve,
)
from idcard_engine.navigation.guard import GuardDecision, decide
from idcard_engine.payments.adapter import normalize

__all__ = [
    "OnboardingState",
    "Snapshot",
    "canonical_route",
    "evaluate",
    "progress",
    "resolve",
    "GuardDecision",
    "decide",
    "normalize",
]
__version__ = "0.1.0"
