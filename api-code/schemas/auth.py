from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials for one of the LOGIN_USER / LOGIN_USERS operator accounts."""

    username: str = Field(..., min_length=1, description="Operator account name; becomes the quota subject.")
    password: str = Field(..., description="Password configured for that operator account.")


class OperatorIdentity(BaseModel):
    user_id: str = Field(
        ...,
        description="Operator id that new deployments are attributed to and monthly quota is counted against.",
    )
    is_admin: bool = Field(
        default=False, description="True when ADMIN_USERS lets this operator assign plans."
    )


class LoginResponse(OperatorIdentity):
    expires_at: datetime = Field(..., description="When the session cookie stops authorizing deploy routes.")


class LogoutResponse(BaseModel):
    success: bool = Field(..., description="True once the session cookie has been cleared.")


class MeResponse(OperatorIdentity):
    """The operator behind the current session cookie."""
