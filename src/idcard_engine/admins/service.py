"""Admin account lookups and role verification."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.admins.models import AdminUserModel
from idcard_engine.common.exceptions import AuthorizationError, ValidationError
from idcard_engine.common.security import STAFF_ROLES, SUPER_ROLE, Actor

logger = logging.getLogger(__name__)


class AdminService:
    """Staff account operations."""

    async def get(self, session: AsyncSession, admin_id: str) -> AdminUserModel | None:
        return await session.get(AdminUserModel, admin_id)

    async def get_by_auth_user(
        self, session: AsyncSession, auth_user_id: str
    ) -> AdminUserModel | None:
        result = await session.execute(
            select(AdminUserModel).where(AdminUserModel.auth_user_id == auth_user_id)
        )
        return result.scalar_one_or_none()

    async def list_admins(
        self, session: AsyncSession, active_only: bool = False
    ) -> list[AdminUserModel]:
        query = select(AdminUserModel).order_by(AdminUserModel.email)
        if active_only:
            query = query.where(AdminUserModel.is_active.is_(True))
        result = await session.execute(query)
        return list(result.scalars().all())

    async def create_admin(
        self,
        session: AsyncSession,
        auth_user_id: str,
        email: str,
        role: str = "admin",
        full_name: str = "",
    ) -> AdminUserModel:
        if role not in STAFF_ROLES:
            raise ValidationError(f"Unknown admin role '{role}'")
        if not auth_user_id.strip() or not email.strip():
            raise ValidationError("auth_user_id and email are required")
        admin = AdminUserModel(
            auth_user_id=auth_user_id.strip(),
            email=email.strip().lower(),
            role=role,
            full_name=full_name,
            is_active=True,
        )
        session.add(admin)
        await session.flush()
        return admin

    async def authorize(
        self, session: AsyncSession, actor: Actor, super_only: bool = False
    ) -> AdminUserModel:
        """Confirm the actor's role claim against the admin table.

        The claim alone is never enough: the row must exist, be active and
        carry the same role the caller claims.
        """
        admin = None
        if not actor.claims_staff:
            reason = "not a staff role"
        else:
            admin = await self.get_by_auth_user(session, actor.id)
            reason = self._denial_reason(admin, actor, super_only)

        if reason is not None:
            logger.warning(
                "Authorization denied",
                extra={"actor_id": actor.id, "claimed_role": actor.role, "reason": reason},
            )
            raise AuthorizationError(f"Actor not authorized: {reason}")
        return admin

    @staticmethod
    def _denial_reason(
        admin: AdminUserModel | None, actor: Actor, super_only: bool
    ) -> str | None:
        if admin is None:
            return "no admin account"
        if not admin.is_active:
            return "admin account inactive"
        if admin.role != actor.role:
            return "role claim does not match admin table"
        if super_only and admin.role != SUPER_ROLE:
            return "super-admin required"
        return None
