from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration resolved from environment variables."""

    mongodb_uri: str = Field(
        default="mongodb://127.0.0.1:27017",
        alias="MONGODB_URI",
        description="MongoDB connection string",
    )
    mongodb_db_name: str = Field(
        default="devflow_deployer",
        alias="MONGODB_DB_NAME",
        description="MongoDB database name",
    )
    deploy_dry_run: bool = Field(
        default=True,
        alias="DEPLOY_DRY_RUN",
        description="When true, provider adapters simulate deployments instead of calling the provider APIs.",
    )
    deploy_default_plan: str = Field(
        default="free",
        alias="DEPLOY_DEFAULT_PLAN",
        description="Plan applied to users without a stored plan record.",
    )
    deploy_enabled_providers: str = Field(
        default="vercel,netlify",
        alias="DEPLOY_ENABLED_PROVIDERS",
        description="Comma-separated list of provider adapters registered at startup.",
    )
    deploy_poll_interval_seconds: float = Field(
        default=5.0,
        alias="DEPLOY_POLL_INTERVAL_SECONDS",
        description="Delay between status polls while a deployment resolves.",
    )
    provider_request_timeout_seconds: float = Field(
        default=15.0,
        alias="PROVIDER_REQUEST_TIMEOUT_SECONDS",
        description="Timeout applied to each provider HTTP request.",
    )
    vercel_api_token: Optional[str] = Field(
        default=None, alias="VERCEL_API_TOKEN", description="Vercel bearer token"
    )
    vercel_api_url: str = Field(
        default="https://api.vercel.com",
        alias="VERCEL_API_URL",
        description="Vercel REST API base URL",
    )
    vercel_team_id: Optional[str] = Field(
        default=None,
        alias="VERCEL_TEAM_ID",
        description="Optional Vercel team scope appended to every request.",
    )
    netlify_api_token: Optional[str] = Field(
        default=None, alias="NETLIFY_API_TOKEN", description="Netlify bearer token"
    )
    netlify_api_url: str = Field(
        default="https://api.netlify.com",
        alias="NETLIFY_API_URL",
        description="Netlify REST API base URL",
    )
    gemini_api_key: Optional[str] = Field(
        default=None, alias="GEMINI_API_KEY", description="Google Gemini API key"
    )
    plan_llm_model: str = Field(
        default="gemini-2.5-flash",
        alias="PLAN_LLM_MODEL",
        description="Generative model used to narrate deployment plans.",
    )
    login_user: str = Field(default="operator", alias="LOGIN_USER")
    login_password: str = Field(default="change-me", alias="LOGIN_PASSWORD")
    login_users: Optional[str] = Field(
        default=None,
        alias="LOGIN_USERS",
        description="Additional operator accounts as comma-separated user:password pairs.",
    )
    admin_users: Optional[str] = Field(
        default=None,
        alias="ADMIN_USERS",
        description="Comma-separated operators allowed to assign plans. Defaults to LOGIN_USER.",
    )
    jwt_secret_key: str = Field(default="change-me", alias="JWT_SECRET_KEY")
    jwt_expire_minutes: int = Field(default=60, alias="JWT_EXPIRE_MINUTES")
    auth_cookie_name: str = Field(default="devflow_auth", alias="AUTH_COOKIE_NAME")
    auth_cookie_secure: bool = Field(default=False, alias="AUTH_COOKIE_SECURE")
    auth_cookie_domain: Optional[str] = Field(default=None, alias="AUTH_COOKIE_DOMAIN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"populate_by_name": True}

    @property
    def enabled_providers(self) -> list[str]:
        return [
            name.strip().lower()
            for name in self.deploy_enabled_providers.split(",")
            if name.strip()
        ]

    @property
    def operator_credentials(self) -> dict[str, str]:
        credentials = {self.login_user: self.login_password}
        for entry in (self.login_users or "").split(","):
            user, sep, password = entry.strip().partition(":")
            if sep and user.strip() and password:
                credentials[user.strip()] = password
        return credentials

    @property
    def admin_user_ids(self) -> set[str]:
        admins = {entry.strip() for entry in (self.admin_users or "").split(",") if entry.strip()}
        return admins or {self.login_user}

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.model_validate(os.environ)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance built from environment variables."""
    return Settings.from_env()
