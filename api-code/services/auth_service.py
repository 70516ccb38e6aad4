from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import jwt
from fastapi import Cookie, HTTPException, Response, status

from settings import Settings


logger = logging.getLogger("devflow-deployer.auth")

TOKEN_SCOPE = "deploy"


class AuthService:
    """Verifies operator credentials and issues the JWT session cookie.

    The token subject is the user id that deployments are attributed to and
    monthly quota is counted against, so every configured operator account
    gets its own subject.
    """

    algorithm = "HS256"

    def __init__(self, settings: Settings):
        self.credentials: Dict[str, str] = settings.operator_credentials
        self.admin_user_ids = settings.admin_user_ids
        self.jwt_secret_key = settings.jwt_secret_key
        self.jwt_expire_minutes = int(settings.jwt_expire_minutes or 60)
        self.cookie_name = settings.auth_cookie_name
        self.cookie_secure = bool(settings.auth_cookie_secure)
        self.cookie_domain = (settings.auth_cookie_domain or "").strip() or None

        if not self.jwt_secret_key or self.jwt_secret_key == "change-me":
            raise RuntimeError("JWT_SECRET_KEY must be configured with a non-default value.")

    def verify_credentials(self, user_id: str, password: str) -> bool:
        expected = self.credentials.get(user_id)
        if expected is None:
            logger.info("Login rejected for unknown user=%s", user_id)
            return False
        return hmac.compare_digest(password.encode(), expected.encode())

    def create_access_token(self, user_id: str) -> Tuple[str, datetime]:
        issued_at = datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(minutes=self.jwt_expire_minutes)
        claims = {
            "sub": user_id,
            "scope": TOKEN_SCOPE,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self.jwt_secret_key, algorithm=self.algorithm)
        return token, expires_at

    def set_auth_cookie(self, response: Response, token: str, expires_at: Optional[datetime] = None) -> None:
        max_age = self.jwt_expire_minutes * 60
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            httponly=True,
            secure=self.cookie_secure,
            samesite="lax",
            max_age=max_age,
            expires=int(expires_at.timestamp()) if expires_at else max_age,
            domain=self.cookie_domain,
            path="/",
        )

    def clear_auth_cookie(self, response: Response) -> None:
        response.delete_cookie(key=self.cookie_name, domain=self.cookie_domain, path="/")

    def decode_user(self, token: Optional[str]) -> str:
        """Return the user id carried by ``token`` or raise 401."""
        if not token:
            raise _unauthorized("Authentication cookie missing.")
        try:
            claims = jwt.decode(token, self.jwt_secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise _unauthorized("Authentication token expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise _unauthorized("Invalid authentication token.") from exc

        user_id = claims.get("sub")
        if claims.get("scope") != TOKEN_SCOPE or user_id not in self.credentials:
            raise _unauthorized("Unknown authentication subject.")
        return user_id

    def require_user(self, token: Optional[str]) -> Dict[str, str]:
        return {"user_id": self.decode_user(token)}

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.admin_user_ids and user_id in self.credentials

    def require_admin(self, token: Optional[str]) -> Dict[str, str]:
        """Like :meth:`require_user`, but only admins may pass; others get 403."""
        user_id = self.decode_user(token)
        if not self.is_admin(user_id):
            logger.info("Admin action refused for user=%s", user_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can assign plans."
            )
        return {"user_id": user_id}

    def build_auth_dependency(self):
        async def dependency(
            auth_token: Optional[str] = Cookie(default=None, alias=self.cookie_name)
        ) -> Dict[str, str]:
            return self.require_user(auth_token)

        return dependency

    def build_admin_dependency(self):
        async def dependency(
            auth_token: Optional[str] = Cookie(default=None, alias=self.cookie_name)
        ) -> Dict[str, str]:
            return self.require_admin(auth_token)

        return dependency


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
