# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the detection lifecycle: triggers, retries, resets and commands.

Timers run on a hand-advanced ``FakeScheduler``; passes run as real asyncio
tasks and are drained with ``wait_idle()``.
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from bizreg import LifecycleState
from bizreg.adaptive import AdaptiveLearningStore, InMemoryKeyValueStore, NullAdaptiveStore
from bizreg.config import DetectorConfig
from bizreg.detector import History
from bizreg.errors import SnapshotError, TransportClosedError
from bizreg.host import StaticPageSource
from bizreg.lifecycle import DetectionLifecycle, Scheduler, retry_delay
from tests._helpers import DC_FR500_HTML, DC_FR500_URL, make_result

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTimer:
    def __init__(self, when: float, delay: float, callback) -> None:
        self.when = when
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.time = 0.0
        self.timers: list[FakeTimer] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.time + delay, delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        self.time += seconds
        due = [t for t in self.timers if not t.cancelled and not t.fired and t.when <= self.time]
        for timer in sorted(due, key=lambda t: t.when):
            timer.fired = True
            timer.callback()

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]


class StubPipeline:
    """Fails the first *failures* passes; optionally blocks each pass on *gate*."""

    def __init__(self, failures: int = 0, gate: asyncio.Event | None = None) -> None:
        self.failures = failures
        self.gate = gate
        self.calls: list[int] = []
        self.history = AdaptiveLearningStore(InMemoryKeyValueStore())

    async def run(self, snapshot, *, attempt: int = 1):
        self.calls.append(attempt)
        if self.gate is not None:
            await self.gate.wait()
        if len(self.calls) <= self.failures:
            raise SnapshotError("Execution context was destroyed")
        return make_result(url=snapshot.url, attempt=attempt)


class RecordingPublisher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.messages: list[dict] = []

    async def publish(self, message):
        if self.error is not None:
            raise self.error
        self.messages.append(message)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def source() -> StaticPageSource:
    return StaticPageSource(DC_FR500_HTML, DC_FR500_URL)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_lifecycle(scheduler, source, publisher):
    def _make(pipeline: StubPipeline, **config) -> DetectionLifecycle:
        return DetectionLifecycle(
            pipeline,
            source,
            config=DetectorConfig(**config),
            scheduler=scheduler,
            publisher=publisher,
        )

    return _make


def _second_form(html: str) -> str:
    return html.replace("</body>", '<form id="extra"><input name="more"></form></body>')


# ---------------------------------------------------------------------------
# Success and retry
# ---------------------------------------------------------------------------


class TestSuccess:
    async def test_start_detects_and_publishes(self, make_lifecycle, scheduler, publisher):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.start()
        await lc.wait_idle()

        assert lc.state is LifecycleState.SUCCEEDED
        assert lc.get_result().is_business_registration_form
        assert pipeline.calls == [1]
        assert publisher.messages[0]["action"] == "formDetected"
        assert publisher.messages[0]["result"]["url"] == DC_FR500_URL

    async def test_followup_after_success_ignored(self, make_lifecycle, scheduler):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.start()
        await lc.wait_idle()
        assert scheduler.delays == [2.5]

        scheduler.advance(2.5)
        await lc.wait_idle()
        assert pipeline.calls == [1]

    async def test_page_load_after_success_ignored(self, make_lifecycle):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        lc.on_page_load()
        await lc.wait_idle()
        assert pipeline.calls == [1]


class TestRetry:
    async def test_backoff_then_success(self, make_lifecycle, scheduler, publisher):
        pipeline = StubPipeline(failures=2)
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        assert lc.state is LifecycleState.RETRYING
        assert lc.attempts == 1

        scheduler.advance(2.0)
        await lc.wait_idle()
        scheduler.advance(3.0)
        await lc.wait_idle()

        assert scheduler.delays == [2.0, 3.0]
        assert pipeline.calls == [1, 2, 3]
        assert lc.state is LifecycleState.SUCCEEDED
        assert lc.get_result().attempt == 3
        assert [m["action"] for m in publisher.messages] == ["formDetected"]

    async def test_request_while_retrying_ignored(self, make_lifecycle, scheduler):
        pipeline = StubPipeline(failures=1)
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        lc.on_page_load()
        await lc.wait_idle()
        assert pipeline.calls == [1]

    async def test_exhaustion_publishes_fallback(self, make_lifecycle, scheduler, publisher, caplog):
        pipeline = StubPipeline(failures=100)
        lc = make_lifecycle(pipeline, max_attempts=3)
        with caplog.at_level(logging.WARNING, logger="bizreg.lifecycle"):
            lc.trigger()
            await lc.wait_idle()
            scheduler.advance(2.0)
            await lc.wait_idle()
            scheduler.advance(3.0)
            await lc.wait_idle()

        assert pipeline.calls == [1, 2, 3]
        assert lc.state is LifecycleState.FAILED
        result = lc.get_result()
        assert result.fallback_mode
        assert result.attempt == 3
        assert result.confidence_score == 0
        assert result.url_pattern == "mytax.dc.gov/form"
        assert result.error == "Detection failed after 3 attempts"

        (message,) = publisher.messages
        assert message["action"] == "detectionFailed"
        assert message["attempts"] == 3
        assert message["result"]["fallbackMode"] is True
        assert "Detection failed after 3 attempts" in caplog.text

        # terminal until reset
        scheduler.advance(100)
        await lc.wait_idle()
        assert pipeline.calls == [1, 2, 3]

    def test_retry_delay(self):
        assert [retry_delay(n) for n in (1, 2, 3)] == [2.0, 3.0, 4.5]
        assert retry_delay(2, base=1.0, factor=2.0) == 2.0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestCoalescing:
    async def test_requests_during_pass_coalesce(self, make_lifecycle):
        gate = asyncio.Event()
        pipeline = StubPipeline(gate=gate)
        lc = make_lifecycle(pipeline)
        lc.trigger(force=False)
        await asyncio.sleep(0)
        assert lc.is_running
        lc.on_page_load()
        lc.on_page_load()
        lc.on_page_load()
        gate.set()
        await lc.wait_idle()
        # the coalesced follow-up finds a result and stops
        assert pipeline.calls == [1]

    async def test_forced_trigger_during_pass(self, make_lifecycle, publisher):
        gate = asyncio.Event()
        pipeline = StubPipeline(gate=gate)
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await asyncio.sleep(0)
        lc.trigger(force=True)
        gate.set()
        await lc.wait_idle()

        assert pipeline.calls == [1, 1]
        assert lc.state is LifecycleState.SUCCEEDED
        # the superseded pass publishes nothing
        assert len(publisher.messages) == 1


# ---------------------------------------------------------------------------
# Resets
# ---------------------------------------------------------------------------


class TestNavigation:
    async def test_navigation_resets_and_redetects(self, make_lifecycle, scheduler, source):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()

        step2 = "https://mytax.dc.gov/form/FR-500/step2"
        source.update(DC_FR500_HTML, url=step2)
        lc.notify_navigation(step2)
        assert lc.state is LifecycleState.IDLE
        assert lc.get_result() is None
        assert scheduler.delays[-1] == 0.5

        scheduler.advance(0.5)
        await lc.wait_idle()
        assert pipeline.calls == [1, 1]
        assert lc.get_result().url == step2
        assert lc.status()["url"] == step2

    async def test_hash_change_waits_longer(self, make_lifecycle, scheduler):
        lc = make_lifecycle(StubPipeline())
        lc.trigger()
        await lc.wait_idle()
        lc.notify_navigation(DC_FR500_URL + "#owners")
        assert scheduler.delays[-1] == 1.5

    async def test_same_url_ignored(self, make_lifecycle, scheduler):
        lc = make_lifecycle(StubPipeline())
        lc.trigger()
        await lc.wait_idle()
        lc.notify_navigation(DC_FR500_URL)
        assert lc.state is LifecycleState.SUCCEEDED
        assert scheduler.delays == []

    async def test_repeated_navigation_keeps_one_timer(self, make_lifecycle, scheduler):
        lc = make_lifecycle(StubPipeline())
        lc.notify_navigation("https://mytax.dc.gov/a")
        lc.notify_navigation("https://mytax.dc.gov/b")
        assert len(scheduler.active) == 1


class TestMutation:
    async def test_significant_change_redetects(self, make_lifecycle, scheduler, source):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()

        source.update(_second_form(DC_FR500_HTML))
        lc.notify_mutation()
        assert scheduler.delays[-1] == 0.8
        scheduler.advance(0.8)
        await lc.wait_idle()

        assert pipeline.calls == [1, 1]
        assert lc.state is LifecycleState.SUCCEEDED

    async def test_insignificant_change_ignored(self, make_lifecycle, scheduler, source):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()

        source.update(DC_FR500_HTML.replace("</body>", "<p>Saved.</p></body>"))
        lc.notify_mutation()
        scheduler.advance(0.8)
        await lc.wait_idle()
        assert pipeline.calls == [1]

    async def test_mutations_debounced(self, make_lifecycle, scheduler):
        lc = make_lifecycle(StubPipeline())
        lc.notify_mutation()
        scheduler.advance(0.5)
        lc.notify_mutation()
        assert len(scheduler.active) == 1
        assert scheduler.active[0].when == pytest.approx(1.3)

    async def test_observer_expires_after_result(self, make_lifecycle, scheduler, source):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.start()
        await lc.wait_idle()
        scheduler.advance(31)
        await lc.wait_idle()

        source.update(_second_form(DC_FR500_HTML))
        lc.notify_mutation()
        assert scheduler.active == []
        assert pipeline.calls == [1]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    async def test_result_before_and_after(self, make_lifecycle):
        lc = make_lifecycle(StubPipeline())
        assert lc.handle_command("getDetectionResult") == {"success": True, "result": None}
        lc.trigger()
        await lc.wait_idle()
        response = lc.handle_command("getDetectionResult")
        assert response["result"]["isBusinessRegistrationForm"] is True

    async def test_status(self, make_lifecycle):
        lc = make_lifecycle(StubPipeline())
        lc.trigger()
        await lc.wait_idle()
        status = lc.handle_command("getDetectionStatus")
        assert status["success"]
        assert status["state"] == "succeeded"
        assert status["attempts"] == 1
        assert status["maxAttempts"] == 5
        assert status["confidenceScore"] == 80
        assert not status["fallbackMode"]

    def test_ping(self, make_lifecycle):
        response = make_lifecycle(StubPipeline()).handle_command("ping")
        assert response["success"]
        assert response["status"] == "alive"
        assert response["state"] == "idle"

    async def test_trigger_forces_new_pass(self, make_lifecycle):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        assert lc.handle_command("triggerDetection") == {"success": True, "message": "Detection triggered"}
        await lc.wait_idle()
        assert pipeline.calls == [1, 1]

    def test_unknown(self, make_lifecycle):
        response = make_lifecycle(StubPipeline()).handle_command("bogus")
        assert response == {"success": False, "error": "Unknown action: bogus"}


class TestFeedback:
    async def test_command_records_current_result(self, make_lifecycle):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        response = lc.handle_command("userFeedback", {"isCorrect": True, "feedback": "right form"})
        assert response == {"success": True, "message": "Feedback recorded successfully"}
        await lc.wait_idle()
        (record,) = await pipeline.history.load()
        assert record.user_confirmed
        assert record.user_feedback == "right form"
        assert record.url_pattern == "mytax.dc.gov/form"

    async def test_record_feedback_returns_record(self, make_lifecycle):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        record = await lc.record_feedback(False)
        assert record is not None
        assert not record.user_confirmed
        assert (await pipeline.history.evaluate("mytax.dc.gov/form", DC_FR500_URL)).matches == 1

    async def test_no_result_yet(self, make_lifecycle):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        assert await lc.record_feedback(True) is None
        assert lc.handle_command("userFeedback", {"isCorrect": True}) == {
            "success": False,
            "error": "No detection result",
        }
        assert await pipeline.history.load() == []

    @pytest.mark.parametrize("payload", [None, {}, {"isCorrect": "yes"}])
    async def test_invalid_payload(self, make_lifecycle, payload):
        lc = make_lifecycle(StubPipeline())
        lc.trigger()
        await lc.wait_idle()
        assert lc.handle_command("userFeedback", payload) == {"success": False, "error": "Invalid feedback data"}

    async def test_store_failure_logged(self, make_lifecycle, caplog):
        class _ReadOnlyStore(InMemoryKeyValueStore):
            async def set(self, key: str, value: str) -> None:
                raise OSError("read-only file system")

        pipeline = StubPipeline()
        pipeline.history = AdaptiveLearningStore(_ReadOnlyStore())
        lc = make_lifecycle(pipeline)
        lc.trigger()
        await lc.wait_idle()
        with caplog.at_level(logging.WARNING, logger="bizreg.lifecycle"):
            assert await lc.record_feedback(True) is None
        assert "Could not record feedback" in caplog.text

    def test_history_protocol(self):
        assert isinstance(AdaptiveLearningStore(InMemoryKeyValueStore()), History)
        assert isinstance(NullAdaptiveStore(), History)


# ---------------------------------------------------------------------------
# Wiring and shutdown
# ---------------------------------------------------------------------------


class TestWiring:
    def test_bind_subscribes(self, make_lifecycle):
        lc = make_lifecycle(StubPipeline())
        host = MagicMock()
        lc.bind(host)
        host.on_mutation.assert_called_once_with(lc.notify_mutation)
        host.on_navigation.assert_called_once_with(lc.notify_navigation)
        host.on_load.assert_called_once_with(lc.on_page_load)

    def test_scheduler_protocol(self, scheduler):
        assert isinstance(scheduler, Scheduler)

    async def test_closed_receiver_logged(self, scheduler, source, caplog):
        lc = DetectionLifecycle(
            StubPipeline(),
            source,
            scheduler=scheduler,
            publisher=RecordingPublisher(error=TransportClosedError("tab closed")),
        )
        with caplog.at_level(logging.WARNING, logger="bizreg.lifecycle"):
            lc.trigger()
            await lc.wait_idle()
        assert lc.state is LifecycleState.SUCCEEDED
        assert "Dropped formDetected notice" in caplog.text

    async def test_without_publisher(self, scheduler, source):
        lc = DetectionLifecycle(StubPipeline(), source, scheduler=scheduler)
        lc.trigger()
        await lc.wait_idle()
        assert lc.state is LifecycleState.SUCCEEDED


class TestClose:
    async def test_close_cancels_pass_and_timers(self, make_lifecycle, scheduler):
        gate = asyncio.Event()
        pipeline = StubPipeline(gate=gate)
        lc = make_lifecycle(pipeline)
        lc.start()
        await asyncio.sleep(0)
        await lc.close()

        assert not lc.is_running
        assert scheduler.active == []
        assert lc.get_result() is None

    async def test_ignores_signals_after_close(self, make_lifecycle, scheduler):
        pipeline = StubPipeline()
        lc = make_lifecycle(pipeline)
        await lc.close()
        lc.trigger()
        lc.notify_mutation()
        lc.notify_navigation("https://mytax.dc.gov/other")
        await lc.wait_idle()
        assert pipeline.calls == []
        assert scheduler.active == []
