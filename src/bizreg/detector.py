# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detection pipeline: one pass from page snapshot to ``DetectionResult``.

Stages (timed by ``PipelineTimer``):
  url → content → scan → classify → structure → adaptive → aggregate

Every capability is injected through a Protocol.  ``build_pipeline()``
selects explicit no-op implementations when configuration disables field
detection or adaptive learning, so the pass itself never branches on flags.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from . import ClassifiedField, DetectionResult, FormType, PartialScores, utc_timestamp
from .adaptive import AdaptiveLearningStore, AdaptiveSignal, InMemoryKeyValueStore, KeyValueStore, NullAdaptiveStore
from .aggregator import ConfidenceAggregator
from .classifier import FieldClassifier, summarize_fields
from .config import DetectorConfig
from .content_signals import ContentAnalysis, ContentSignalAnalyzer, infer_form_type
from .dom import PageSnapshot
from .form_structure import analyze_form_structure
from .logging_config import bind_page_context, clear_page_context
from .pipeline_timer import PipelineTimer
from .scanner import FieldScanner, ScanResult
from .taxonomy import load_taxonomy
from .url_signals import UrlAnalysis, UrlSignalAnalyzer, extract_url_pattern, url_root

logger = logging.getLogger("bizreg.detector")

# ---------------------------------------------------------------------------
# Capability protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class UrlAnalyzer(Protocol):
    def analyze(self, url: str) -> UrlAnalysis: ...


@runtime_checkable
class ContentAnalyzer(Protocol):
    def analyze(self, snapshot: PageSnapshot) -> ContentAnalysis: ...


@runtime_checkable
class Scanner(Protocol):
    def scan(
        self, snapshot: PageSnapshot, *, state: str | None = None, timer: PipelineTimer | None = None
    ) -> ScanResult: ...


@runtime_checkable
class Classifier(Protocol):
    def classify_all(self, fields: Iterable, *, state: str | None = None) -> tuple[ClassifiedField, ...]: ...


@runtime_checkable
class History(Protocol):
    async def evaluate(self, url_pattern: str, url: str) -> AdaptiveSignal: ...

    async def record(self, result: DetectionResult, *, confirmed: bool, feedback: str | None = None) -> Any: ...


class NoOpScanner:
    """Field detection disabled: every page has zero fields."""

    def scan(
        self, snapshot: PageSnapshot, *, state: str | None = None, timer: PipelineTimer | None = None
    ) -> ScanResult:
        return ScanResult(fields=())


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class DetectionPipeline:
    """Run one detection pass over a snapshot."""

    def __init__(
        self,
        *,
        url_analyzer: UrlAnalyzer,
        content_analyzer: ContentAnalyzer,
        scanner: Scanner,
        classifier: Classifier,
        history: History,
        aggregator: ConfidenceAggregator | None = None,
        config: DetectorConfig | None = None,
    ) -> None:
        self._url = url_analyzer
        self._content = content_analyzer
        self._scanner = scanner
        self._classifier = classifier
        self._history = history
        self._aggregator = aggregator or ConfidenceAggregator()
        self._config = config or DetectorConfig()

    @property
    def history(self) -> History:
        return self._history

    async def run(self, snapshot: PageSnapshot, *, attempt: int = 1) -> DetectionResult:
        """Produce a ``DetectionResult`` for *snapshot*.

        Component failures are isolated inside each stage; an exception
        escaping here is a failed attempt for the lifecycle to retry.
        """
        timer = PipelineTimer(self._config.scan_budget)
        bind_page_context(snapshot.url, attempt)
        try:
            return await self._run(snapshot, attempt, timer)
        finally:
            timer.finalize()
            clear_page_context()

    async def _run(self, snapshot: PageSnapshot, attempt: int, timer: PipelineTimer) -> DetectionResult:
        page_url = snapshot.url
        pattern = extract_url_pattern(page_url)

        timer.stage("url")
        url = self._url.analyze(page_url)

        timer.stage("content")
        content = self._content.analyze(snapshot)
        state = url.state or content.state

        timer.stage("scan")
        scan = self._scanner.scan(snapshot, state=state, timer=timer)

        timer.stage("classify")
        fields = self._classifier.classify_all(scan.fields, state=state)
        stats = summarize_fields(fields)

        timer.stage("structure")
        structure = analyze_form_structure(snapshot, fields)

        timer.stage("adaptive")
        signal = await self._history.evaluate(pattern, page_url)

        timer.stage("aggregate")
        verdict = self._aggregator.aggregate(
            url=url,
            content=content,
            structure=structure,
            stats=stats,
            state=state,
            adaptive_score=signal.score,
            adaptive_override=signal.override,
        )

        form_type, details = FormType.GENERAL, {}
        if verdict.is_business_registration_form:
            form_type, details = infer_form_type(page_url, snapshot.page_text_lower)

        result = DetectionResult(
            url=page_url,
            url_pattern=pattern,
            url_root=url_root(page_url),
            state=state,
            is_business_registration_form=verdict.is_business_registration_form,
            confidence_score=verdict.confidence_score,
            confidence_breakdown=verdict.breakdown,
            form_type=form_type,
            fields=fields,
            timestamp=utc_timestamp(),
            attempt=attempt,
            form_details=details,
            form_structure=structure.structure,
            scores=PartialScores(
                url=url.score,
                content=content.score,
                structural=structure.score,
                dynamic_loading=structure.dynamic_loading_score,
                adaptive=signal.score,
            ),
            adaptive_override=verdict.adaptive_override,
            reasons=(*url.reasons, *content.reasons, *structure.reasons, *verdict.rules),
            scan_truncated=scan.truncated,
        )
        logger.info(
            "Detection pass %d: %s (confidence %d, state %s, %d fields, %.0f ms)",
            attempt,
            "registration form" if result.is_business_registration_form else "not a registration form",
            result.confidence_score,
            state or "-",
            len(fields),
            timer.elapsed_ms(),
        )
        logger.debug("Stage timings: %s", timer.elapsed_per_stage())
        return result


def build_pipeline(config: DetectorConfig | None = None, store: KeyValueStore | None = None) -> DetectionPipeline:
    """Wire the default capabilities for *config*."""
    config = config or DetectorConfig()
    taxonomy = load_taxonomy(config.taxonomy_overrides)
    scanner: Scanner = FieldScanner(config) if config.field_detection else NoOpScanner()
    history: History
    if config.adaptive_enabled:
        history = AdaptiveLearningStore(
            store if store is not None else InMemoryKeyValueStore(),
            key=config.history_key,
            limit=config.history_limit,
        )
    else:
        history = NullAdaptiveStore()
    return DetectionPipeline(
        url_analyzer=UrlSignalAnalyzer(),
        content_analyzer=ContentSignalAnalyzer(),
        scanner=scanner,
        classifier=FieldClassifier(taxonomy),
        history=history,
        config=config,
    )
