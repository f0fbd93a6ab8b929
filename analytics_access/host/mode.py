"""
analytics_access/host/mode.py

Host mode detection.

The Host Environment is probed exactly once per process. A probe that
answers within the timeout means the dashboard is embedded; anything else
(error, timeout, no bridge configured) falls back to standalone so the
dashboard always renders.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from functools import lru_cache

from analytics_access.config import get_host_settings
from analytics_access.domain.models import HostContext, HostMode
from analytics_access.errors import HostModeConflictError
from analytics_access.host.bridge import HostBridge, HostBridgeError, HttpHostBridge
from analytics_access.logging_utils import log_event, scrub_secrets

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeDetection:
    """
    Memoized outcome of the host probe.
    """

    mode: HostMode
    context: HostContext | None = None


class ModeDetector:
    """
    Single-shot, fail-open host mode detector.
    """

    def __init__(self, *, bridge: HostBridge | None, probe_timeout_seconds: float = 2.0) -> None:
        self._bridge = bridge
        self._probe_timeout_seconds = probe_timeout_seconds
        self._lock = threading.Lock()
        self._detection: ModeDetection | None = None
        self._probe_count = 0
        self._pinned_context_requested = False

    @property
    def bridge(self) -> HostBridge | None:
        return self._bridge

    @property
    def probe_count(self) -> int:
        return self._probe_count

    def detect(self) -> HostMode:
        return self.detection().mode

    def detection(self) -> ModeDetection:
        """
        Return the memoized detection, probing the host on first use.

        A mode pinned to embedded skips the probe, so the host context is
        requested once here instead. If that request fails the detection
        stays embedded without a context.
        """

        with self._lock:
            if self._detection is None:
                self._detection = self._probe()
            if (
                self._detection.mode is HostMode.EMBEDDED
                and self._detection.context is None
                and not self._pinned_context_requested
            ):
                self._pinned_context_requested = True
                self._detection = self._load_pinned_context(self._detection)
            return self._detection

    def assume(self, mode: HostMode) -> HostMode:
        """
        Pin the mode without probing.

        Raises ``HostModeConflictError`` if a different mode was already
        determined in this process.
        """

        with self._lock:
            if self._detection is None:
                self._detection = ModeDetection(mode=mode)
                log_event(logger, logging.INFO, "host_mode_pinned", mode=mode.value)
            elif self._detection.mode is not mode:
                raise HostModeConflictError(
                    f"Host mode already determined as '{self._detection.mode.value}'; "
                    f"cannot switch to '{mode.value}'."
                )
            return self._detection.mode

    def _load_pinned_context(self, detection: ModeDetection) -> ModeDetection:
        if self._bridge is None:
            return detection
        try:
            context = self._bridge.get_context(timeout_seconds=self._probe_timeout_seconds)
        except HostBridgeError as exc:
            log_event(
                logger,
                logging.WARNING,
                "host_context_unavailable",
                mode=detection.mode.value,
                error=scrub_secrets(str(exc)),
            )
            return detection
        log_event(logger, logging.INFO, "host_context_loaded", host=context.host_name)
        return ModeDetection(mode=detection.mode, context=context)

    def _probe(self) -> ModeDetection:
        self._probe_count += 1
        if self._bridge is None:
            log_event(logger, logging.INFO, "host_mode_detected", mode=HostMode.STANDALONE.value, reason="no_bridge")
            return ModeDetection(mode=HostMode.STANDALONE)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="host-probe")
        future = executor.submit(self._bridge.get_context, timeout_seconds=self._probe_timeout_seconds)
        try:
            context = future.result(timeout=self._probe_timeout_seconds)
        except FutureTimeoutError:
            log_event(
                logger,
                logging.WARNING,
                "host_mode_detected",
                mode=HostMode.STANDALONE.value,
                reason="probe_timeout",
                timeout_seconds=self._probe_timeout_seconds,
            )
            return ModeDetection(mode=HostMode.STANDALONE)
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.WARNING,
                "host_mode_detected",
                mode=HostMode.STANDALONE.value,
                reason="probe_failed",
                error=scrub_secrets(str(exc)),
            )
            return ModeDetection(mode=HostMode.STANDALONE)
        finally:
            executor.shutdown(wait=False)

        log_event(
            logger,
            logging.INFO,
            "host_mode_detected",
            mode=HostMode.EMBEDDED.value,
            host=context.host_name,
        )
        return ModeDetection(mode=HostMode.EMBEDDED, context=context)


@lru_cache(maxsize=1)
def get_mode_detector() -> ModeDetector:
    """
    Return the process-wide mode detector.

    A configured ``ANALYTICS_HOST_MODE`` pins the mode up front; otherwise
    the first ``detect()`` call probes the host bridge.
    """

    settings = get_host_settings()
    bridge = HttpHostBridge(base_url=settings.bridge_url) if settings.bridge_url else None
    detector = ModeDetector(bridge=bridge, probe_timeout_seconds=settings.probe_timeout_seconds)
    if settings.mode_override is not None:
        detector.assume(settings.mode_override)
    return detector
