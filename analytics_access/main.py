from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from analytics_access.config import get_dashboard_settings
from analytics_access.errors import InvalidQuerySpec
from analytics_access.runtime import DataAccessRuntime, build_runtime


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - ANALYTICS_HOST_MODE, when set, must be 'embedded' or 'standalone'.
    - A mode pinned to embedded skips the probe, so ANALYTICS_BASE_URL is
      required as the fallback when the host context cannot be read.
    - Without a host bridge (or with the mode pinned to standalone) the
      dashboard runs on a personal access token, so ANALYTICS_BASE_URL and
      ANALYTICS_PAT are required.
    - The dashboard query file must exist.
    """

    from analytics_access.env import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Host mode ------------------------------------------------------
    raw_mode = os.getenv("ANALYTICS_HOST_MODE", "").strip().lower()
    if raw_mode and raw_mode not in {"embedded", "standalone"}:
        errors.append(
            f"ANALYTICS_HOST_MODE='{raw_mode}' is not valid. Allowed values: ['embedded', 'standalone']."
        )

    bridge_url = os.getenv("ANALYTICS_HOST_BRIDGE_URL", "").strip()
    if raw_mode == "embedded" and not bridge_url:
        errors.append("ANALYTICS_HOST_MODE is 'embedded' but ANALYTICS_HOST_BRIDGE_URL is not set.")
    if raw_mode == "embedded" and bridge_url and not os.getenv("ANALYTICS_BASE_URL", "").strip():
        errors.append(
            "ANALYTICS_HOST_MODE is 'embedded' (probe skipped) but ANALYTICS_BASE_URL is not set."
        )

    # --- Standalone credentials -----------------------------------------
    standalone_possible = raw_mode == "standalone" or not bridge_url
    if standalone_possible:
        if not os.getenv("ANALYTICS_BASE_URL", "").strip():
            errors.append("ANALYTICS_BASE_URL is not set. It is required when running standalone.")
        if not os.getenv("ANALYTICS_PAT", "").strip():
            errors.append(
                "ANALYTICS_PAT is not set. A personal access token is required when running standalone."
            )

    # --- Dashboard definitions ------------------------------------------
    config_path = Path(get_dashboard_settings().config_path)
    if not config_path.exists():
        errors.append(f"Dashboard query config file not found: {config_path}")

    if errors:
        raise RuntimeError(
            "Startup validation failed - missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _register_dashboard_queries(runtime: DataAccessRuntime) -> int:
    """
    Register every query from the dashboard config. Invalid specs abort startup.
    """

    from analytics_access.query.loader import load_dashboard_queries

    specs = load_dashboard_queries(config_path=get_dashboard_settings().config_path)
    for spec in specs:
        try:
            runtime.register(spec)
        except InvalidQuerySpec as exc:
            raise RuntimeError(f"Dashboard query '{spec.label}' is invalid: {exc}") from exc
    return len(specs)


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Build the runtime if needed, start refresh scheduling on boot; shut it down on exit."""
    log = logging.getLogger(__name__)
    runtime: DataAccessRuntime | None = getattr(application.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime()
        application.state.runtime = runtime
        registered = _register_dashboard_queries(runtime)
        log.info("Registered %d dashboard queries", registered)

    runtime.start()
    log.info("Refresh scheduler started mode=%s", runtime.mode.value)
    try:
        yield
    finally:
        runtime.shutdown()
        log.info("Refresh scheduler shut down")


def create_app(runtime: DataAccessRuntime | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Pass a prebuilt ``runtime`` to skip environment validation and dashboard
    registration; the caller then owns which queries are registered.
    Serve with ``uvicorn analytics_access.main:create_app --factory``.
    """

    if runtime is None:
        _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Analytics Dashboard Data API",
        version="1.0.0",
        lifespan=_lifespan,
    )
    application.state.runtime = runtime

    from analytics_access.api.routers import host_router, window_router

    application.include_router(host_router)
    application.include_router(window_router)

    @application.get("/health")
    def healthcheck() -> dict[str, object]:
        active = getattr(application.state, "runtime", None)
        return {
            "status": "ok",
            "mode": active.mode.value if active is not None else None,
            "registered_queries": len(active.scheduler.registered_keys()) if active is not None else 0,
        }

    return application
