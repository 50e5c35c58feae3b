"""
meshtrust_core.config
---------------------
Runtime policy for the authentication subsystem.

Defaults come from meshtrust_core.constants; AuthConfig.from_env() overrides
them from MESHTRUST_* environment variables.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import os
from .constants import (
    DEFAULT_MAX_CHALLENGE_AGE, DEFAULT_LATENCY_SLACK, DEFAULT_MAX_FAILURES,
    DEFAULT_FAILURE_WINDOW, DEFAULT_FAILURE_COOLDOWN, DEFAULT_DB_PATH,
    DEFAULT_IDENTITY_PATH, DEFAULT_VPN_NETWORK,
)

ENV_PREFIX = "MESHTRUST_"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be non-negative")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{ENV_PREFIX}{name} must be at least 1")
    return value


@dataclass
class AuthConfig:
    max_challenge_age: float = DEFAULT_MAX_CHALLENGE_AGE
    latency_slack: float = DEFAULT_LATENCY_SLACK
    max_failures: int = DEFAULT_MAX_FAILURES
    failure_window: float = DEFAULT_FAILURE_WINDOW
    failure_cooldown: float = DEFAULT_FAILURE_COOLDOWN
    store_provider: str = "sqlite"       # sqlite | memory
    db_path: str = DEFAULT_DB_PATH
    identity_path: str = DEFAULT_IDENTITY_PATH
    vpn_network: str = DEFAULT_VPN_NETWORK
    webhook_url: Optional[str] = None

    @property
    def handshake_timeout(self) -> float:
        return self.max_challenge_age + self.latency_slack

    @classmethod
    def from_env(cls) -> "AuthConfig":
        return cls(
            max_challenge_age=_env_float("MAX_CHALLENGE_AGE", DEFAULT_MAX_CHALLENGE_AGE),
            latency_slack=_env_float("LATENCY_SLACK", DEFAULT_LATENCY_SLACK),
            max_failures=_env_int("MAX_FAILURES", DEFAULT_MAX_FAILURES),
            failure_window=_env_float("FAILURE_WINDOW", DEFAULT_FAILURE_WINDOW),
            failure_cooldown=_env_float("FAILURE_COOLDOWN", DEFAULT_FAILURE_COOLDOWN),
            store_provider=os.getenv(ENV_PREFIX + "STORE_PROVIDER", "sqlite").lower(),
            db_path=os.getenv(ENV_PREFIX + "DB_PATH", DEFAULT_DB_PATH),
            identity_path=os.getenv(ENV_PREFIX + "IDENTITY_PATH", DEFAULT_IDENTITY_PATH),
            vpn_network=os.getenv(ENV_PREFIX + "VPN_NETWORK", DEFAULT_VPN_NETWORK),
            webhook_url=os.getenv(ENV_PREFIX + "WEBHOOK_URL") or None,
        )
