"""Application configuration utilities."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from the environment."""

    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    supabase_jwt_secret: Optional[str] = Field(default=None)
    supabase_jwt_aud: str = Field(default="authenticated")
    supabase_jwks_url: Optional[str] = Field(default=None)
    invite_redirect_url: Optional[str] = Field(
        default=None,
        description="Where the invitation email link sends the child after setup",
    )
    http_timeout: float = Field(default=15.0, gt=0)

    @property
    def base_url(self) -> str:
        if not self.supabase_url or not self.supabase_anon_key:
            raise RuntimeError("Missing SUPABASE_URL/SUPABASE_ANON_KEY for API access.")
        return self.supabase_url.rstrip("/")

    @property
    def service_role_key(self) -> str:
        if not self.supabase_service_role_key:
            raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY for admin access.")
        return self.supabase_service_role_key

    @property
    def jwks_url(self) -> str:
        return self.supabase_jwks_url or f"{self.base_url}/auth/v1/keys"


def load_config() -> AppConfig:
    """Build the configuration from environment variables.

    Missing Supabase credentials are not an error here; they are reported when a
    client is first needed so that tooling can import the app without secrets.
    """

    timeout = os.getenv("FAMILYSAFE_HTTP_TIMEOUT")
    return AppConfig(
        supabase_url=os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"),
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY"),
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET"),
        supabase_jwt_aud=os.getenv("SUPABASE_JWT_AUD", "authenticated"),
        supabase_jwks_url=os.getenv("SUPABASE_JWKS_URL"),
        invite_redirect_url=os.getenv("FAMILYSAFE_INVITE_REDIRECT_URL"),
        http_timeout=float(timeout) if timeout else 15.0,
    )


@lru_cache
def get_config() -> AppConfig:
    return load_config()
