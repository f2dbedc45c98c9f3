# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detection lifecycle: when to run a pass, when to retry, when to reset.

State machine::

    IDLE ──request──▶ RUNNING ──ok──▶ SUCCEEDED
                        │
                        └─error─▶ FAILED ─(attempts < max)─▶ RETRYING ──timer──▶ RUNNING
                                     │
                                     └─(attempts == max)─▶ fallback result (terminal)

SUCCEEDED and FAILED are terminal until a reset: navigation, a forced
re-detection, or a significant content change.  At most one pass runs at a
time; requests arriving meanwhile are coalesced into one follow-up request.
All timing goes through an injected ``Scheduler``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from . import DetectionResult, LifecycleState, utc_timestamp
from .config import DetectorConfig
from .detector import DetectionPipeline
from .errors import PersistenceError, TransportError
from .fingerprint import ContentFingerprint, detect_content_change
from .host import HostEvents, SnapshotSource
from .transport import Publisher, deliver_with_retry
from .url_signals import extract_url_pattern, url_root

logger = logging.getLogger("bizreg.lifecycle")

COMMANDS = ("getDetectionResult", "triggerDetection", "getDetectionStatus", "userFeedback", "ping")

# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Event-loop clock and timers."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def retry_delay(attempt: int, base: float = 2.0, factor: float = 1.5) -> float:
    """Delay after failed attempt *attempt* (1-based): ``base * factor**(attempt-1)``."""
    return base * factor ** (attempt - 1)


def _strip_fragment(url: str) -> str:
    return url.split("#", 1)[0]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class DetectionLifecycle:
    """Own one page's detection state: triggers, retries, resets, queries."""

    def __init__(
        self,
        pipeline: DetectionPipeline,
        source: SnapshotSource,
        *,
        config: DetectorConfig | None = None,
        scheduler: Scheduler | None = None,
        publisher: Publisher | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._source = source
        self._config = config or DetectorConfig()
        self._scheduler = scheduler or AsyncioScheduler()
        self._publisher = publisher

        self._state = LifecycleState.IDLE
        self._attempts = 0
        self._result: DetectionResult | None = None
        self._fingerprint: ContentFingerprint | None = None
        self._url = source.url
        self._started_at: float | None = None
        self._generation = 0  # bumped on reset; stale passes discard their outcome
        self._task: asyncio.Task | None = None
        self._pending = False
        self._timers: dict[str, TimerHandle] = {}
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # -- queries ------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_result(self) -> DetectionResult | None:
        return self._result

    def status(self) -> dict[str, Any]:
        result = self._result
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "maxAttempts": self._config.max_attempts,
            "hasResult": result is not None,
            "isBusinessForm": bool(result and result.is_business_registration_form),
            "confidenceScore": result.confidence_score if result else None,
            "fallbackMode": bool(result and result.fallback_mode),
            "url": self._url,
        }

    def ping(self) -> dict[str, Any]:
        return {"status": "alive", "state": self._state.value, "timestamp": utc_timestamp()}

    async def record_feedback(self, confirmed: bool, feedback: str | None = None) -> Any:
        """Record the user's verdict on the current result in adaptive history.

        Returns the stored record, or None when there is no result yet or the
        history backend could not be written.
        """
        result = self._result
        if result is None:
            logger.debug("Feedback ignored: no detection result")
            return None
        try:
            return await self._pipeline.history.record(result, confirmed=confirmed, feedback=feedback)
        except PersistenceError as e:
            logger.warning("Could not record feedback for %s: %s", result.url_pattern, e)
            return None

    def handle_command(self, verb: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Answer one messaging command verb."""
        if verb == "getDetectionResult":
            return {"success": True, "result": self._result.to_dict() if self._result else None}
        if verb == "triggerDetection":
            self.trigger(force=True)
            return {"success": True, "message": "Detection triggered"}
        if verb == "getDetectionStatus":
            return {"success": True, **self.status()}
        if verb == "userFeedback":
            if not isinstance(payload, dict) or not isinstance(payload.get("isCorrect"), bool):
                return {"success": False, "error": "Invalid feedback data"}
            if self._result is None:
                return {"success": False, "error": "No detection result"}
            self._track(self.record_feedback(payload["isCorrect"], payload.get("feedback")))
            return {"success": True, "message": "Feedback recorded successfully"}
        if verb == "ping":
            return {"success": True, **self.ping()}
        logger.debug("Unknown command %r", verb)
        return {"success": False, "error": f"Unknown action: {verb}"}

    # -- wiring -------------------------------------------------------------

    def bind(self, host: HostEvents) -> None:
        """Subscribe to *host*'s mutation, navigation and load signals."""
        host.on_mutation(self.notify_mutation)
        host.on_navigation(self.notify_navigation)
        host.on_load(self.on_page_load)

    # -- triggers -----------------------------------------------------------

    def start(self) -> None:
        """Immediate pass plus a delayed follow-up for late-rendering pages."""
        self._started_at = self._scheduler.now()
        self._request()
        self._schedule("followup", self._config.page_load_followup, self._request)

    def on_page_load(self) -> None:
        self._request()

    def trigger(self, *, force: bool = True) -> None:
        """Manual detection; *force* discards any existing result first."""
        if force:
            self._reset("forced re-detection")
        self._request()

    def notify_mutation(self) -> None:
        """Debounce DOM mutation signals, then check for a significant change."""
        if self._closed:
            return
        if self._result is not None and self._observer_expired():
            return
        self._schedule("mutation", self._config.mutation_debounce, self._on_mutations_settled)

    def notify_navigation(self, url: str) -> None:
        """The page URL changed: reset and re-detect after a short delay."""
        if self._closed or url == self._url:
            return
        hash_only = _strip_fragment(url) == _strip_fragment(self._url)
        self._url = url
        self._reset(f"navigation to {url}")
        self._started_at = self._scheduler.now()
        delay = self._config.hash_navigation_delay if hash_only else self._config.navigation_delay
        self._schedule("navigation", delay, self._request)

    # -- shutdown -------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait for the running pass and any background work to finish."""
        while True:
            pending = [t for t in (self._task, *self._background) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        tasks = [t for t in (self._task, *self._background) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- internals ------------------------------------------------------------

    def _observer_expired(self) -> bool:
        if self._started_at is None:
            return False
        return self._scheduler.now() - self._started_at > self._config.observer_lifetime

    def _schedule(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        existing = self._timers.pop(name, None)
        if existing is not None:
            existing.cancel()

        def fire() -> None:
            self._timers.pop(name, None)
            callback()

        self._timers[name] = self._scheduler.call_later(delay, fire)

    def _cancel_timer(self, name: str) -> None:
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def _reset(self, reason: str) -> None:
        logger.info("Resetting detection: %s", reason)
        self._generation += 1
        self._cancel_timer("retry")
        self._state = LifecycleState.IDLE
        self._attempts = 0
        self._result = None
        self._fingerprint = None

    def _request(self) -> None:
        if self._closed:
            return
        if self.is_running:
            self._pending = True
            return
        if self._state is not LifecycleState.IDLE:
            logger.debug("Ignoring detection request in state %s", self._state.value)
            return
        self._launch()

    def _launch(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run_pass(self._generation))

    async def _run_pass(self, generation: int) -> None:
        self._attempts += 1
        attempt = self._attempts
        self._state = LifecycleState.RUNNING
        try:
            snapshot = await self._source.snapshot()
            result = await self._pipeline.run(snapshot, attempt=attempt)
            fingerprint = await self._source.fingerprint()
        except Exception as e:
            if generation == self._generation:
                self._on_failure(attempt, e)
        else:
            if generation == self._generation:
                self._on_success(result, fingerprint)
        finally:
            self._task = None
            if generation != self._generation:
                logger.debug("Discarded outcome of superseded pass %d", attempt)
            if self._pending:
                self._pending = False
                self._request()

    def _on_success(self, result: DetectionResult, fingerprint: ContentFingerprint | None) -> None:
        self._state = LifecycleState.SUCCEEDED
        self._result = result
        self._fingerprint = fingerprint
        self._publish({"action": "formDetected", "result": result.to_dict()})

    def _on_failure(self, attempt: int, error: Exception) -> None:
        self._state = LifecycleState.FAILED
        if attempt < self._config.max_attempts:
            delay = retry_delay(attempt, self._config.retry_base_delay, self._config.retry_backoff)
            logger.warning(
                "Detection attempt %d/%d failed (%s: %s), retrying in %.2fs",
                attempt,
                self._config.max_attempts,
                type(error).__name__,
                error,
                delay,
            )
            self._state = LifecycleState.RETRYING
            self._schedule("retry", delay, self._launch_retry)
            return

        logger.warning("Detection failed after %d attempts, using fallback result: %s", attempt, error)
        url = self._source.url
        self._result = DetectionResult.fallback(
            url, attempts=attempt, url_pattern=extract_url_pattern(url), url_root=url_root(url)
        )
        self._publish(
            {
                "action": "detectionFailed",
                "error": self._result.error,
                "attempts": attempt,
                "result": self._result.to_dict(),
            }
        )

    def _launch_retry(self) -> None:
        if self._closed or self._state is not LifecycleState.RETRYING or self.is_running:
            return
        self._launch()

    def _on_mutations_settled(self) -> None:
        if self._closed:
            return
        self._track(self._check_content_change())

    async def _check_content_change(self) -> None:
        current = await self._source.fingerprint()
        if self._fingerprint is None:
            if current is not None and self._result is not None:
                self._fingerprint = current
            return
        verdict = detect_content_change(self._fingerprint, current, input_delta=self._config.significant_input_delta)
        if not verdict.changed:
            return
        logger.info("Significant content change: %s", "; ".join(verdict.reasons))
        self._reset("content changed")
        self._request()

    def _publish(self, message: dict[str, Any]) -> None:
        if self._publisher is None:
            return
        self._track(self._deliver(message))

    async def _deliver(self, message: dict[str, Any]) -> None:
        try:
            await deliver_with_retry(
                self._publisher,
                message,
                max_retries=self._config.transport_max_retries,
                retry_delay=self._config.transport_retry_delay,
                timeout=self._config.transport_timeout,
            )
        except TransportError as e:
            logger.warning("Dropped %s notice: %s", message.get("action"), e)

    def _track(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
