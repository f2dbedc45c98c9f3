# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for page content analysis, state identification and form-type inference."""

from __future__ import annotations

import pytest

from bizreg import FormType
from bizreg.content_signals import (
    ContentSignalAnalyzer,
    analyze_content,
    identify_state_from_content,
    infer_form_type,
)
from tests._helpers import snapshot_of


class TestAnalyzeContent:
    def test_registration_page_scores(self, dc_snapshot):
        analysis = analyze_content(dc_snapshot)
        assert analysis.score > 0
        assert analysis.business_term_count > 0
        assert any("heading matched" in r for r in analysis.reasons)
        assert analysis.marker_hits["DC"] == 3

    def test_blog_scores_zero(self, blog_snapshot):
        analysis = analyze_content(blog_snapshot)
        assert analysis.score == 0
        assert analysis.business_term_count == 0
        assert analysis.state is None

    def test_empty_page(self):
        analysis = analyze_content(snapshot_of(""))
        assert analysis.score == 0
        assert analysis.reasons == ("no page text",)

    def test_proximity_bonus(self):
        snap = snapshot_of("<p>Use this form to register a business llc in minutes.</p>")
        analysis = analyze_content(snap)
        assert any("near entity type" in r for r in analysis.reasons)

    def test_government_terms(self):
        snap = snapshot_of("<p>Filed with the Secretary of State, Division of Corporations.</p>")
        analysis = analyze_content(snap)
        assert "government term: 'secretary of state'" in analysis.reasons
        assert "government term: 'division of corporations'" in analysis.reasons

    def test_score_capped(self):
        text = " ".join(["business registration articles of incorporation llc corporation"] * 20)
        snap = snapshot_of(f"<title>Register your business</title><h1>Business Registration</h1><p>{text}</p>")
        assert analyze_content(snap).score == 100

    def test_business_term_count_case_insensitive(self):
        snap = snapshot_of("<p>Business BUSINESS business</p>")
        assert analyze_content(snap).business_term_count == 3

    def test_analyzer_wraps_function(self, dc_snapshot):
        assert ContentSignalAnalyzer().analyze(dc_snapshot).score == analyze_content(dc_snapshot).score


class TestIdentifyState:
    def test_state_name_in_heading(self):
        assert identify_state_from_content(snapshot_of("<h2>Texas Business Registration</h2>")) == "TX"

    def test_state_code_in_heading(self):
        assert identify_state_from_content(snapshot_of("<h1>NY LLC filing</h1>")) == "NY"

    def test_state_of_phrase(self):
        snap = snapshot_of("<p>Formed under the laws of the state of delaware.</p>")
        assert identify_state_from_content(snap) == "DE"

    def test_registration_phrase(self):
        snap = snapshot_of("<p>Welcome to Ohio business registration online.</p>")
        assert identify_state_from_content(snap) == "OH"

    def test_no_state(self, blog_snapshot):
        assert identify_state_from_content(blog_snapshot) is None


class TestInferFormType:
    @pytest.mark.parametrize(
        ("url", "text", "form_type", "details"),
        [
            (
                "https://mytax.dc.gov/form/FR-500",
                "register for sales tax",
                FormType.TAX_REGISTRATION,
                {"taxType": "sales_tax"},
            ),
            (
                "https://sos.example.gov/foreign",
                "qualify to do business here",
                FormType.FOREIGN_QUALIFICATION,
                {},
            ),
            (
                "https://sos.example.gov/filings",
                "file your annual report",
                FormType.COMPLIANCE_FILING,
                {"complianceType": "annual_report"},
            ),
            (
                "https://sos.example.gov/llc",
                "articles of organization for a limited liability company",
                FormType.ENTITY_FORMATION,
                {"entityType": "llc"},
            ),
            ("https://example.com/", "hello world", FormType.GENERAL, {}),
        ],
    )
    def test_form_types(self, url, text, form_type, details):
        assert infer_form_type(url, text) == (form_type, details)

    def test_tax_checked_before_formation(self):
        form_type, _ = infer_form_type("https://x.gov/new", "create a new business and get an ein")
        assert form_type is FormType.TAX_REGISTRATION
