from dataclasses import dataclass

from fastapi import Depends, Header

from api.config.settings import AuthMode, Settings, SettingsDep
from api.v1.core.exceptions import ValidationError

USER_PREFIX = "user"
SESSION_PREFIX = "session"


@dataclass(frozen=True)
class TenantContext:
    """The user or anonymous session a job runs for. Exactly one id is set."""

    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.session_id):
            raise ValidationError(
                "Exactly one of user_id or session_id is required",
                details={"user_id": self.user_id, "session_id": self.session_id},
            )

    @property
    def is_user(self) -> bool:
        return self.user_id is not None

    @property
    def key(self) -> str:
        """Opaque tenant key, e.g. ``user:42`` or ``session:abc``."""
        if self.user_id is not None:
            return f"{USER_PREFIX}:{self.user_id}"
        return f"{SESSION_PREFIX}:{self.session_id}"

    def owner_columns(self) -> dict[str, str | None]:
        """Column values identifying this tenant on tenant-owned rows."""
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "tenant_key": self.key,
        }

    @classmethod
    def from_key(cls, key: str) -> "TenantContext":
        prefix, _, value = key.partition(":")
        if prefix == USER_PREFIX:
            return cls(user_id=value)
        if prefix == SESSION_PREFIX:
            return cls(session_id=value)
        raise ValidationError(f"Invalid tenant key: {key}")

    @classmethod
    def resolve(
        cls, user_id: str | None = None, session_id: str | None = None
    ) -> "TenantContext":
        """Resolve caller identity; an authenticated user wins over a session."""
        user_id = (user_id or "").strip() or None
        session_id = (session_id or "").strip() or None
        if user_id:
            return cls(user_id=user_id)
        if session_id:
            return cls(session_id=session_id)
        raise ValidationError("A user or session identity is required")

    def __str__(self) -> str:
        return self.key


async def get_tenant(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_session_id: str | None = Header(None, alias="X-Session-ID"),
    settings: Settings = SettingsDep,
) -> TenantContext:
    """
    Dependency injection function to get the calling tenant.

    Behavior based on AUTH_MODE:
    - none: Returns the configured development user
    - headers: Trusts X-User-ID / X-Session-ID set by the upstream auth layer
    """
    if settings.auth_mode == AuthMode.NONE:
        return TenantContext(user_id=settings.dev_user_id)
    elif settings.auth_mode == AuthMode.HEADERS:
        return TenantContext.resolve(user_id=x_user_id, session_id=x_session_id)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


# Convenience type alias for dependency injection
TenantDep = Depends(get_tenant)
