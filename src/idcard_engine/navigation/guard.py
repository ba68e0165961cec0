"""Navigation guard — keep an applicant on the step the resolver says they are on."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.common.exceptions import ExternalDependencyError
from idcard_engine.eligibility.resolver import STATE_ROUTES, Snapshot, canonical_route, resolve
from idcard_engine.students.service import StudentService

logger = logging.getLogger(__name__)

ONBOARDING_ROUTES: frozenset[str] = frozenset(STATE_ROUTES.values())


class GuardOutcome(str, Enum):
    LOADING = "loading"
    ALLOW = "allow"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    route: str | None = None
    replace: bool = False

    @classmethod
    def loading(cls) -> "GuardDecision":
        return cls(GuardOutcome.LOADING)

    @classmethod
    def allow(cls, route: str) -> "GuardDecision":
        return cls(GuardOutcome.ALLOW, route=route)

    @classmethod
    def redirect(cls, route: str) -> "GuardDecision":
        # Replace, not push: the back button must not lead into a loop.
        return cls(GuardOutcome.REDIRECT, route=route, replace=True)

    @property
    def blocks_rendering(self) -> bool:
        return self.outcome is not GuardOutcome.ALLOW


def _normalize_route(route: str) -> str:
    route = (route or "").split("?", 1)[0].strip()
    if not route.startswith("/"):
        route = "/" + route
    return route.rstrip("/") or "/"


def decide(requested_route: str, snapshot: Snapshot | None) -> GuardDecision:
    """Compare the requested route with the canonical one.

    ``None`` means the snapshot is not available yet: rendering waits and
    no redirect happens. Routes outside the onboarding steps pass through.
    """
    if snapshot is None:
        return GuardDecision.loading()
    requested = _normalize_route(requested_route)
    target = canonical_route(resolve(snapshot))
    if requested == target:
        return GuardDecision.allow(requested)
    if requested in ONBOARDING_ROUTES:
        return GuardDecision.redirect(target)
    return GuardDecision.allow(requested)


class NavigationGuard:
    """Loads the snapshot with a bounded wait and decides."""

    def __init__(self, students: StudentService, timeout: float):
        self.students = students
        self.timeout = timeout

    async def load_snapshot(self, session: AsyncSession, user_id: str) -> Snapshot | None:
        try:
            return await asyncio.wait_for(
                self.students.load_snapshot_for_user(session, user_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Snapshot load timed out", extra={"user_id": user_id})
        except (SQLAlchemyError, ExternalDependencyError) as exc:
            logger.warning(
                "Snapshot unavailable", extra={"user_id": user_id, "error": str(exc)},
            )
        return None

    async def check(
        self, session: AsyncSession, user_id: str, requested_route: str
    ) -> GuardDecision:
        snapshot = await self.load_snapshot(session, user_id)
        decision = decide(requested_route, snapshot)
        if decision.outcome is GuardOutcome.REDIRECT:
            logger.debug(
                "Redirecting applicant",
                extra={"user_id": user_id, "requested": requested_route, "route": decision.route},
            )
        return decision
