"""
analytics_access/runtime.py

Wires the data access components together for one process.

Order of construction follows the data flow: mode detection, identity
provider selection, query builder, fetch engine, windowed provider and
finally the refresh scheduler that drives them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from analytics_access.config import (
    AnalyticsServiceSettings,
    get_analytics_service_settings,
    get_fetch_settings,
    get_host_settings,
    get_identity_settings,
    get_scheduler_settings,
    get_window_settings,
)
from analytics_access.domain.models import HostMode, Row, UserDescriptor
from analytics_access.fetch.engine import FetchEngine
from analytics_access.host.bridge import HostBridge
from analytics_access.host.identity import IdentityProvider, select_identity_provider
from analytics_access.host.mode import ModeDetection, ModeDetector, get_mode_detector
from analytics_access.logging_utils import log_event
from analytics_access.query.builder import QueryBuilder, QuerySpec
from analytics_access.scheduler.refresh import RefreshScheduler, RefreshStatus
from analytics_access.window.provider import UpdateStream, WindowedDataProvider

logger = logging.getLogger(__name__)


@dataclass
class DataAccessRuntime:
    """
    The assembled data access layer plus the Renderer-facing calls.
    """

    detection: ModeDetection
    identity: IdentityProvider
    builder: QueryBuilder
    engine: FetchEngine
    provider: WindowedDataProvider
    scheduler: RefreshScheduler
    bridge: HostBridge | None = None

    @property
    def mode(self) -> HostMode:
        return self.detection.mode

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.engine.close()
        if self.bridge is not None:
            self.bridge.close()

    def register(self, spec: QuerySpec, *, run_immediately: bool = True) -> str:
        return self.scheduler.register(spec, run_immediately=run_immediately)

    def unregister(self, spec_or_key: QuerySpec | str) -> bool:
        return self.scheduler.unregister(spec_or_key)

    def get_window(self, spec_key: str, offset: int, length: int) -> tuple[Row, ...]:
        return self.provider.get_window(spec_key, offset, length)

    def on_updated(self, spec_key: str) -> UpdateStream:
        return self.provider.on_updated(spec_key)

    def failure_count(self, spec_key: str) -> int:
        return self.scheduler.failure_count(spec_key)

    def status(self, spec_key: str) -> RefreshStatus:
        return self.scheduler.status(spec_key)

    def current_user(self) -> UserDescriptor:
        return self.identity.describe_current_user()


def resolve_base_url(detection: ModeDetection, service_settings: AnalyticsServiceSettings) -> str:
    """
    Pick the analytics base address: host-supplied when embedded, configured otherwise.
    """

    if detection.context is not None and detection.context.analytics_base_url:
        return detection.context.analytics_base_url.rstrip("/")
    if service_settings.base_url:
        return service_settings.base_url
    raise RuntimeError("No analytics base URL available. Set ANALYTICS_BASE_URL.")


def build_runtime(
    *,
    detector: ModeDetector | None = None,
    session: requests.Session | None = None,
) -> DataAccessRuntime:
    """
    Build the data access runtime from environment settings.
    """

    host_settings = get_host_settings()
    mode_detector = detector or get_mode_detector()
    detection = mode_detector.detection()

    identity = select_identity_provider(
        detection.mode,
        bridge=mode_detector.bridge,
        settings=get_identity_settings(),
        context=detection.context,
        token_timeout_seconds=host_settings.token_timeout_seconds,
    )
    builder = QueryBuilder(base_url=resolve_base_url(detection, get_analytics_service_settings()))
    engine = FetchEngine(settings=get_fetch_settings(), session=session)
    provider = WindowedDataProvider(idle_seconds=get_window_settings().idle_seconds)
    scheduler = RefreshScheduler(
        builder=builder,
        identity=identity,
        engine=engine,
        provider=provider,
        settings=get_scheduler_settings(),
    )

    log_event(
        logger,
        logging.INFO,
        "data_access_runtime_built",
        mode=detection.mode.value,
        base_url=builder.base_url,
    )
    return DataAccessRuntime(
        detection=detection,
        identity=identity,
        builder=builder,
        engine=engine,
        provider=provider,
        scheduler=scheduler,
        bridge=mode_detector.bridge,
    )
