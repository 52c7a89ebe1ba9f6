"""Environment-derived builder settings."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    npm_auth_token: str | None = None
    # Seconds allowed for each external process; None waits indefinitely.
    timeout: float | None = None
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        timeout = env.get("VERCEL_BUILDER_TIMEOUT")
        return cls(
            npm_auth_token=env.get("NPM_AUTH_TOKEN") or None,
            timeout=float(timeout) if timeout else None,
            debug=env.get("VERCEL_BUILDER_DEBUG", "").lower() in _TRUTHY,
        )
