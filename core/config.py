"""
Challenge Settings

Runtime configuration read from environment variables. `main.py` loads a
`.env` file (python-dotenv) before building the settings.

Variables:
    CAPTCHA_SESSION_TTL_SECONDS     Session lifetime (default: 1800)
    CAPTCHA_HARD_THRESHOLD          Score at which severity is "high" (default: 60)
    CAPTCHA_SOFT_THRESHOLD          Score at which a challenge is issued (default: 40)
    CAPTCHA_FAIL_CLOSED             Challenge when scoring/storage fails (default: false)
    CAPTCHA_STORE_BACKEND           "memory" or "redis" (default: memory)
    CAPTCHA_SWEEP_INTERVAL_SECONDS  Expired-session sweep period (default: 60)
    CAPTCHA_ADMIN_TOKEN             Bearer token for the stats endpoints
    CAPTCHA_RESOURCE_JS             JS path clients must load
    CAPTCHA_RESOURCE_CSS            CSS path clients must load
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


DEFAULT_SESSION_TTL_SECONDS = 30 * 60
DEFAULT_HARD_THRESHOLD = 60
DEFAULT_SOFT_THRESHOLD = 40
DEFAULT_RESOURCE_JS = "/captcha/resources/verify.js"
DEFAULT_RESOURCE_CSS = "/captcha/resources/verify.css"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class ChallengeSettings:
    """Configuration for the challenge dispatch core and its HTTP adapter."""

    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    hard_threshold: int = DEFAULT_HARD_THRESHOLD
    soft_threshold: int = DEFAULT_SOFT_THRESHOLD
    fail_closed: bool = False
    store_backend: str = "memory"
    sweep_interval_seconds: int = 60
    admin_token: Optional[str] = None
    resource_js: str = DEFAULT_RESOURCE_JS
    resource_css: str = DEFAULT_RESOURCE_CSS

    @classmethod
    def from_env(cls) -> ChallengeSettings:
        """Build settings from the process environment."""
        backend = os.getenv("CAPTCHA_STORE_BACKEND", "memory").strip().lower()
        if backend not in ("memory", "redis"):
            logger.warning(f"Unknown CAPTCHA_STORE_BACKEND={backend!r}, using memory")
            backend = "memory"

        return cls(
            session_ttl_seconds=_env_int("CAPTCHA_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS),
            hard_threshold=_env_int("CAPTCHA_HARD_THRESHOLD", DEFAULT_HARD_THRESHOLD),
            soft_threshold=_env_int("CAPTCHA_SOFT_THRESHOLD", DEFAULT_SOFT_THRESHOLD),
            fail_closed=_env_bool("CAPTCHA_FAIL_CLOSED", False),
            store_backend=backend,
            sweep_interval_seconds=_env_int("CAPTCHA_SWEEP_INTERVAL_SECONDS", 60),
            admin_token=os.getenv("CAPTCHA_ADMIN_TOKEN") or None,
            resource_js=os.getenv("CAPTCHA_RESOURCE_JS", DEFAULT_RESOURCE_JS),
            resource_css=os.getenv("CAPTCHA_RESOURCE_CSS", DEFAULT_RESOURCE_CSS),
        )
