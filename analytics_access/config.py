"""
analytics_access/config.py

Application-level configuration helpers.

Every setting is read once from the environment (plus optional `.env` files)
and cached for the process lifetime; nothing here changes after startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from analytics_access.domain.models import HostMode, RefreshPolicy
from analytics_access.env import load_env_files, project_root

_HOST_MODE_VALUES = {mode.value: mode for mode in HostMode}


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading settings.
    """

    load_env_files()


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _resolve_path(raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (project_root() / candidate).resolve()


@dataclass(frozen=True)
class HostSettings:
    """
    Host Environment integration settings.
    """

    mode_override: HostMode | None = None
    bridge_url: str | None = None
    probe_timeout_seconds: float = 2.0
    token_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class IdentitySettings:
    """
    Credential-based (standalone) identity settings.
    """

    personal_access_token: str | None = None
    user_name: str = "Personal access token user"

    def __repr__(self) -> str:
        configured = self.personal_access_token is not None
        return f"IdentitySettings(personal_access_token_configured={configured}, user_name={self.user_name!r})"


@dataclass(frozen=True)
class AnalyticsServiceSettings:
    """
    Remote analytics query service settings.
    """

    base_url: str | None = None


@dataclass(frozen=True)
class FetchSettings:
    """
    Shared HTTP behavior settings for the fetch engine.
    """

    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 16.0
    jitter_fraction: float = 0.2
    max_pages: int = 10
    max_workers: int = 8


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Refresh scheduling settings.
    """

    policy: RefreshPolicy = RefreshPolicy()
    tick_budget_seconds: float = 120.0
    housekeeping_interval_seconds: float = 60.0


@dataclass(frozen=True)
class WindowSettings:
    """
    Windowed data provider settings.
    """

    idle_seconds: float = 300.0


@dataclass(frozen=True)
class DashboardSettings:
    """
    Location of the JSON dashboard query definitions.
    """

    config_path: str = "analytics_access/dashboard_queries.json"


def _parse_host_mode(raw: str | None) -> HostMode | None:
    if raw is None:
        return None
    return _HOST_MODE_VALUES.get(raw.strip().lower())


@lru_cache(maxsize=1)
def get_host_settings() -> HostSettings:
    """
    Return cached host integration settings from environment variables.
    """

    return HostSettings(
        mode_override=_parse_host_mode(_get_optional_str_env("ANALYTICS_HOST_MODE")),
        bridge_url=_get_optional_str_env("ANALYTICS_HOST_BRIDGE_URL"),
        probe_timeout_seconds=max(0.1, _get_float_env("ANALYTICS_HOST_PROBE_TIMEOUT_SECONDS", 2.0)),
        token_timeout_seconds=max(0.1, _get_float_env("ANALYTICS_HOST_TOKEN_TIMEOUT_SECONDS", 5.0)),
    )


@lru_cache(maxsize=1)
def get_identity_settings() -> IdentitySettings:
    """
    Return cached standalone identity settings from environment variables.
    """

    return IdentitySettings(
        personal_access_token=_get_optional_str_env("ANALYTICS_PAT"),
        user_name=_get_str_env("ANALYTICS_USER_NAME", "Personal access token user"),
    )


@lru_cache(maxsize=1)
def get_analytics_service_settings() -> AnalyticsServiceSettings:
    """
    Return cached analytics service settings from environment variables.
    """

    base_url = _get_optional_str_env("ANALYTICS_BASE_URL")
    return AnalyticsServiceSettings(base_url=base_url.rstrip("/") if base_url else None)


@lru_cache(maxsize=1)
def get_fetch_settings() -> FetchSettings:
    """
    Return cached fetch engine settings from environment variables.
    """

    return FetchSettings(
        timeout_seconds=max(1.0, _get_float_env("ANALYTICS_FETCH_TIMEOUT_SECONDS", 30.0)),
        max_retries=max(0, _get_int_env("ANALYTICS_FETCH_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("ANALYTICS_FETCH_BACKOFF_INITIAL_SECONDS", 1.0)),
        backoff_multiplier=max(1.0, _get_float_env("ANALYTICS_FETCH_BACKOFF_MULTIPLIER", 2.0)),
        backoff_max_seconds=max(0.1, _get_float_env("ANALYTICS_FETCH_BACKOFF_MAX_SECONDS", 16.0)),
        jitter_fraction=min(0.9, max(0.0, _get_float_env("ANALYTICS_FETCH_JITTER_FRACTION", 0.2))),
        max_pages=max(1, _get_int_env("ANALYTICS_FETCH_MAX_PAGES", 10)),
        max_workers=max(1, _get_int_env("ANALYTICS_FETCH_MAX_WORKERS", 8)),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return cached refresh scheduling settings from environment variables.
    """

    base_seconds = max(1.0, _get_float_env("ANALYTICS_REFRESH_BASE_SECONDS", 30.0))
    return SchedulerSettings(
        policy=RefreshPolicy(
            base_interval_seconds=base_seconds,
            max_interval_seconds=max(base_seconds, _get_float_env("ANALYTICS_REFRESH_MAX_SECONDS", 600.0)),
            backoff_multiplier=max(1.0, _get_float_env("ANALYTICS_REFRESH_MULTIPLIER", 2.0)),
            jitter_fraction=min(0.9, max(0.0, _get_float_env("ANALYTICS_REFRESH_JITTER_FRACTION", 0.1))),
        ),
        tick_budget_seconds=max(1.0, _get_float_env("ANALYTICS_REFRESH_TICK_BUDGET_SECONDS", 120.0)),
        housekeeping_interval_seconds=max(
            1.0, _get_float_env("ANALYTICS_REFRESH_HOUSEKEEPING_SECONDS", 60.0)
        ),
    )


@lru_cache(maxsize=1)
def get_window_settings() -> WindowSettings:
    """
    Return cached windowed provider settings from environment variables.
    """

    return WindowSettings(
        idle_seconds=max(1.0, _get_float_env("ANALYTICS_WINDOW_IDLE_SECONDS", 300.0)),
    )


@lru_cache(maxsize=1)
def get_dashboard_settings() -> DashboardSettings:
    """
    Return cached dashboard definition settings from environment variables.
    """

    raw_path = _get_str_env(
        "ANALYTICS_DASHBOARD_CONFIG_PATH",
        "analytics_access/dashboard_queries.json",
    )
    return DashboardSettings(config_path=str(_resolve_path(raw_path)))
