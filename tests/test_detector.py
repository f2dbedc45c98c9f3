# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end detection passes over the sample pages."""

from __future__ import annotations

import pytest
import structlog

from bizreg import FieldType, FormType, LabelSource
from bizreg.adaptive import AdaptiveLearningStore, InMemoryKeyValueStore, NullAdaptiveStore
from bizreg.config import DetectorConfig
from bizreg.detector import (
    ContentAnalyzer,
    DetectionPipeline,
    NoOpScanner,
    Scanner,
    UrlAnalyzer,
    build_pipeline,
)
from bizreg.errors import ScanError
from tests._helpers import snapshot_of


def _without_timestamp(result) -> dict:
    payload = result.to_dict()
    payload.pop("timestamp")
    return payload


class TestDcRegistrationForm:
    """FR-500 on mytax.dc.gov: every signal agrees."""

    @pytest.fixture
    async def result(self, dc_snapshot):
        return await build_pipeline().run(dc_snapshot)

    async def test_detected(self, result):
        assert result.is_business_registration_form
        assert result.confidence_score == 100
        assert result.state == "DC"
        assert result.form_type is FormType.TAX_REGISTRATION
        assert not result.fallback_mode
        assert result.attempt == 1

    async def test_breakdown(self, result):
        assert result.confidence_breakdown == {
            "domain": 20,
            "urlPattern": 12,
            "formFields": 20,
            "stateIdentification": 15,
            "fieldClassification": 25,
            "businessTerminology": 15,
            "adaptive": 0,
        }

    async def test_partial_scores(self, result):
        assert result.scores.url == 48
        assert result.scores.structural == 100
        assert result.scores.adaptive == 0

    async def test_fields(self, result):
        assert len(result.fields) == 9
        categories = {cf.field.label.text: (cf.classification.category, cf.classification.confidence) for cf in result.fields}
        assert categories["Business Name"] == ("business_name", 95)
        assert categories["FEIN"] == ("ein", 98)
        assert categories["Trade Name"] == ("dba", 95)
        assert categories["Entity Type"] == ("entity_type", 90)
        assert categories["Email Address"] == ("email", 90)

    async def test_url_metadata(self, result):
        assert result.url_pattern == "mytax.dc.gov/form"
        assert result.url_root == "https://mytax.dc.gov"

    async def test_reasons_include_rules(self, result):
        assert "score>=50" in result.reasons
        assert "state with 5+ classified fields" in result.reasons


class TestPlainPage:
    async def test_blog_not_detected(self, blog_snapshot):
        result = await build_pipeline().run(blog_snapshot)
        assert not result.is_business_registration_form
        assert result.confidence_score < 20
        assert result.fields == ()
        assert result.form_type is FormType.GENERAL
        assert result.form_details == {}

    async def test_formless_registration_landing_page(self):
        html = """<html><head><title>Register a Business | MyTax.DC.gov</title></head><body>
        <h1>Combined Business Tax Registration (FR-500)</h1>
        <p>Register your business with the District of Columbia. The DC Government
           Office of Tax and Revenue issues a tax account number to every new business.
           Business registration, business license and tax registration start here.</p>
        </body></html>"""
        snapshot = snapshot_of(html, "https://mytax.dc.gov/business/register")
        result = await build_pipeline().run(snapshot)
        assert result.scores.structural == 0
        assert result.state == "DC"
        assert not result.is_business_registration_form
        assert result.form_type is FormType.GENERAL


class TestRadioGroupPage:
    async def test_entity_type_group(self, entity_type_snapshot):
        result = await build_pipeline().run(entity_type_snapshot)
        (cf,) = result.fields
        assert cf.field.type is FieldType.RADIO_GROUP
        assert cf.field.label.text == "Select Entity Type"
        assert cf.field.label.source is LabelSource.LEGEND
        assert len(cf.field.options) == 4
        assert cf.field.name == "entity_type"
        assert (cf.classification.category, cf.classification.confidence) == ("entity_type", 90)

    async def test_entity_type_section(self, entity_type_snapshot):
        payload = (await build_pipeline().run(entity_type_snapshot)).to_dict()
        assert payload["sections"] == [
            {"name": "Select Entity Type", "fieldCount": 1, "categories": {"entity_type": 1}}
        ]


class TestPipelineProperties:
    async def test_idempotent(self, dc_snapshot):
        pipeline = build_pipeline()
        first = await pipeline.run(dc_snapshot)
        second = await pipeline.run(dc_snapshot)
        assert _without_timestamp(first) == _without_timestamp(second)

    async def test_attempt_recorded(self, dc_snapshot):
        assert (await build_pipeline().run(dc_snapshot, attempt=3)).attempt == 3

    async def test_log_context_cleared(self, dc_snapshot):
        await build_pipeline().run(dc_snapshot)
        assert "page_url" not in structlog.contextvars.get_contextvars()

    async def test_component_failure_propagates(self, dc_snapshot):
        class BrokenScanner:
            def scan(self, snapshot, *, state=None, timer=None):
                raise ScanError("document detached")

        default = build_pipeline()
        pipeline = DetectionPipeline(
            url_analyzer=default._url,
            content_analyzer=default._content,
            scanner=BrokenScanner(),
            classifier=default._classifier,
            history=default.history,
        )
        with pytest.raises(ScanError):
            await pipeline.run(dc_snapshot)
        assert "page_url" not in structlog.contextvars.get_contextvars()

    def test_capabilities_satisfy_protocols(self):
        pipeline = build_pipeline()
        assert isinstance(pipeline._url, UrlAnalyzer)
        assert isinstance(pipeline._content, ContentAnalyzer)
        assert isinstance(pipeline._scanner, Scanner)
        assert isinstance(NoOpScanner(), Scanner)


class TestCapabilityConfig:
    async def test_field_detection_disabled(self, dc_snapshot):
        pipeline = build_pipeline(DetectorConfig(field_detection=False))
        result = await pipeline.run(dc_snapshot)
        assert result.fields == ()
        assert result.confidence_breakdown["fieldClassification"] == 0
        # URL, content and structure still carry the page
        assert result.is_business_registration_form

    def test_adaptive_disabled(self):
        assert isinstance(build_pipeline(DetectorConfig(adaptive_enabled=False)).history, NullAdaptiveStore)

    def test_adaptive_enabled_uses_store(self):
        history = build_pipeline(DetectorConfig(history_limit=7)).history
        assert isinstance(history, AdaptiveLearningStore)
        assert history.limit == 7


class TestAdaptiveOverride:
    async def test_confirmed_history_overrides(self, blog_snapshot):
        pipeline = build_pipeline(store=InMemoryKeyValueStore())
        baseline = await pipeline.run(blog_snapshot)
        assert not baseline.is_business_registration_form

        for _ in range(3):
            await pipeline.history.record(baseline, confirmed=True)

        result = await pipeline.run(blog_snapshot)
        assert result.is_business_registration_form
        assert result.adaptive_override
        assert result.confidence_breakdown["adaptive"] == 15
        assert result.scores.adaptive == 15
        assert "adaptive override" in result.reasons
