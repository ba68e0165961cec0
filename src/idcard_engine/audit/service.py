"""Audit service — record, verify, and query the staff action chain."""

import hashlib
import hmac as hmac_mod
import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_engine.audit.models import AdminActionModel
from idcard_engine.common.config import IdCardSettings
from idcard_engine.common.exceptions import ConflictError
from idcard_engine.common.security import Actor


class AuditService:
    """Immutable, hash-chained log of every applied transition."""

    def __init__(self, settings: IdCardSettings):
        self.settings = settings

    # ── Write ──

    async def record_action(
        self,
        session: AsyncSession,
        action_type: str,
        actor: Actor,
        *,
        profile_id: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        details: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> AdminActionModel:
        """Append an action to the chain inside the caller's transaction.

        Two writers racing for the same sequence number collide on the unique
        index; the loser gets ConflictError and its whole transition rolls back.
        """
        extra = extra or {}

        head = await self.get_chain_head(session)
        prev_hash = head.event_hash if head else None
        sequence = head.sequence + 1 if head else 1

        event_hash = self._compute_event_hash(
            sequence, action_type, actor.id, profile_id, target_id, details, extra, prev_hash,
        )

        action = AdminActionModel(
            sequence=sequence,
            action_type=action_type,
            performed_by=actor.id,
            actor_role=actor.role,
            profile_id=profile_id,
            target_type=target_type,
            target_id=target_id,
            details=details,
            extra=extra,
            prev_hash=prev_hash,
            event_hash=event_hash,
            signature=self._sign(event_hash),
        )
        session.add(action)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError("Audit chain advanced concurrently, retry") from exc
        return action

    # ── Read ──

    async def get_chain_head(self, session: AsyncSession) -> AdminActionModel | None:
        """Return the most recent action."""
        result = await session.execute(
            select(AdminActionModel)
            .order_by(AdminActionModel.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_actions(
        self,
        session: AsyncSession,
        profile_id: str | None = None,
        target_id: str | None = None,
        action_type: str | None = None,
        performed_by: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AdminActionModel]:
        """Filtered action list, newest first."""
        query = select(AdminActionModel)
        if profile_id:
            query = query.where(AdminActionModel.profile_id == profile_id)
        if target_id:
            query = query.where(AdminActionModel.target_id == target_id)
        if action_type:
            query = query.where(AdminActionModel.action_type == action_type)
        if performed_by:
            query = query.where(AdminActionModel.performed_by == performed_by)
        if since:
            query = query.where(AdminActionModel.created_at >= since)
        if until:
            query = query.where(AdminActionModel.created_at < until)
        query = (
            query.order_by(AdminActionModel.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    # ── Verify ──

    async def verify_chain(self, session: AsyncSession) -> dict[str, Any]:
        """Walk the chain oldest→newest, verify linkage, hashes and signatures."""
        result = await session.execute(
            select(AdminActionModel).order_by(AdminActionModel.sequence.asc())
        )
        actions = list(result.scalars().all())

        prev_hash = None
        for checked, action in enumerate(actions):
            expected_hash = self._compute_event_hash(
                action.sequence, action.action_type, action.performed_by,
                action.profile_id, action.target_id, action.details,
                action.extra or {}, action.prev_hash,
            )
            if (
                action.prev_hash != prev_hash
                or action.event_hash != expected_hash
                or not self._verify_signature(action.event_hash, action.signature)
            ):
                return {"valid": False, "events_checked": checked, "break_at": action.id}
            prev_hash = action.event_hash

        return {"valid": True, "events_checked": len(actions), "break_at": None}

    # ── Internal helpers ──

    @staticmethod
    def _compute_event_hash(
        sequence: int,
        action_type: str,
        performed_by: str,
        profile_id: str | None,
        target_id: str | None,
        details: str | None,
        extra: dict[str, Any],
        prev_hash: str | None,
    ) -> str:
        """SHA-256 of canonical JSON of the action fields."""
        canonical = json.dumps(
            {
                "sequence": sequence,
                "action_type": action_type,
                "performed_by": performed_by,
                "profile_id": profile_id,
                "target_id": target_id,
                "details": details,
                "extra": extra,
                "prev_hash": prev_hash,
            },
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def _sign(self, event_hash: str) -> str:
        """HMAC-SHA256 of event_hash with the current HMAC key."""
        return hmac_mod.new(
            self.settings.current_hmac_key.encode(),
            event_hash.encode(),
            hashlib.sha256,
        ).hexdigest()

    def _verify_signature(self, event_hash: str, signature: str) -> bool:
        """Verify signature against all keys in the keyring."""
        for _version, key in self.settings.hmac_keyring.items():
            expected = hmac_mod.new(
                key.encode(), event_hash.encode(), hashlib.sha256,
            ).hexdigest()
            if hmac_mod.compare_digest(expected, signature):
                return True
        return False
