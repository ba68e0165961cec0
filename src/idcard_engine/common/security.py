"""Caller authentication dependencies.

The BFF in front of this service authenticates users and forwards the
identity claims it obtained from the auth provider. Claims are trusted only
as far as identifying the actor; role membership is re-checked against the
admin table by the Transition Authority.
"""

from dataclasses import dataclass

from fastapi import Header, HTTPException

STAFF_ROLES = frozenset({"admin", "manager", "super"})
SUPER_ROLE = "super"
APPLICANT_ROLE = "applicant"
GATEWAY_ROLE = "gateway"
FACE_PIPELINE_ROLE = "face_pipeline"


@dataclass(frozen=True)
class Actor:
    """Identity claim of whoever is asking for a transition."""
    id: str
    role: str

    @property
    def claims_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def gateway(cls, gateway_name: str) -> "Actor":
        return cls(id=f"gateway:{gateway_name}", role=GATEWAY_ROLE)

    @classmethod
    def face_pipeline(cls) -> "Actor":
        return cls(id="system:face-pipeline", role=FACE_PIPELINE_ROLE)


async def require_api_key(
    x_idcard_api_key: str = Header(..., alias="X-IdCard-Api-Key"),
) -> str:
    """FastAPI dependency that validates the service API key from header."""
    from idcard_engine.common.config import get_settings

    settings = get_settings()
    if x_idcard_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_idcard_api_key


async def require_actor(
    x_idcard_api_key: str = Header(..., alias="X-IdCard-Api-Key"),
    x_actor_id: str = Header(..., alias="X-Actor-Id"),
    x_actor_role: str = Header(..., alias="X-Actor-Role"),
) -> Actor:
    """Resolve the forwarded actor claim after checking the service key."""
    await require_api_key(x_idcard_api_key)
    if not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Missing actor id")
    return Actor(id=x_actor_id.strip(), role=x_actor_role.strip().lower())
