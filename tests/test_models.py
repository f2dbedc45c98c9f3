# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the core result types in bizreg/__init__.py."""

from __future__ import annotations

import json

import pytest

from bizreg import (
    OTHER_CATEGORY,
    OTHER_SECTION,
    UNCLASSIFIED,
    CandidateField,
    Classification,
    ClassifiedField,
    DetectionResult,
    FieldOption,
    FieldType,
    FormType,
    Label,
    LabelSource,
)
from tests._helpers import make_result


def _field(name: str = "fein", **kw) -> CandidateField:
    values = {"type": FieldType.TEXT, "name": name, "id": name, "label": Label("FEIN", LabelSource.LABEL_FOR)}
    values.update(kw)
    return CandidateField(**values)


class TestClassification:
    def test_unclassified_is_other_at_50(self):
        assert UNCLASSIFIED.category == OTHER_CATEGORY
        assert UNCLASSIFIED.confidence == 50
        assert not UNCLASSIFIED.is_classified

    def test_named_category_is_classified(self):
        assert Classification("ein", 98, "fein").is_classified


class TestCandidateField:
    def test_element_excluded_from_equality(self):
        assert _field(element=object()) == _field(element=object())

    def test_element_not_in_repr(self):
        assert "element" not in repr(_field(element="<input>"))

    def test_frozen(self):
        f = _field()
        with pytest.raises(AttributeError):
            f.name = "other"  # type: ignore[misc]

    def test_attributes_read_only(self):
        source = {"maxlength": "9"}
        f = _field(attributes=source)
        source["maxlength"] = "99"
        assert f.attributes == {"maxlength": "9"}
        with pytest.raises(TypeError):
            f.attributes["pattern"] = "\\d+"  # type: ignore[index]


class TestDetectionResult:
    def test_score_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="out of range"):
            make_result(confidence_score=101)
        with pytest.raises(ValueError):
            make_result(confidence_score=-1)

    def test_boundaries_accepted(self):
        assert make_result(confidence_score=0).confidence_score == 0
        assert make_result(confidence_score=100).confidence_score == 100

    def test_fallback(self):
        result = DetectionResult.fallback("https://x.gov/a", attempts=5, url_pattern="x.gov/a")
        assert result.fallback_mode
        assert not result.is_business_registration_form
        assert result.confidence_score == 0
        assert result.fields == ()
        assert result.attempt == 5
        assert result.error == "Detection failed after 5 attempts"
        assert result.form_type is FormType.GENERAL

    def test_classified_fields_excludes_other(self):
        fields = (
            ClassifiedField(_field("fein"), Classification("ein", 98)),
            ClassifiedField(_field("misc"), UNCLASSIFIED),
        )
        result = make_result(fields=fields)
        assert [cf.field.name for cf in result.classified_fields] == ["fein"]

    def test_mappings_read_only(self):
        breakdown = {"domain": 20}
        result = make_result(confidence_breakdown=breakdown, form_details={"formNumber": "FR-500"})
        breakdown["domain"] = 0
        assert result.confidence_breakdown == {"domain": 20}
        with pytest.raises(TypeError):
            result.confidence_breakdown["adaptive"] = 15  # type: ignore[index]
        with pytest.raises(TypeError):
            result.form_details["formNumber"] = "FR-164"  # type: ignore[index]


class TestSections:
    def _result(self, *sections: str) -> DetectionResult:
        fields = tuple(
            ClassifiedField(_field(f"f{i}", section=s), Classification("ein", 90) if i % 2 else UNCLASSIFIED)
            for i, s in enumerate(sections)
        )
        return make_result(fields=fields)

    def test_grouped_in_order_of_appearance(self):
        groups = self._result("Business", "Address", "Business").sections()
        assert list(groups) == ["Business", "Address"]
        assert [cf.field.name for cf in groups["Business"]] == ["f0", "f2"]

    def test_loose_fields_under_other(self):
        groups = self._result("", "Business").sections()
        assert list(groups) == [OTHER_SECTION, "Business"]

    def test_no_named_sections(self):
        assert self._result("", "").sections() == {}
        assert self._result("", "").to_dict()["sections"] == []

    def test_payload(self):
        payload = self._result("Business", "Business", "Address").to_dict()
        assert payload["sections"] == [
            {"name": "Business", "fieldCount": 2, "categories": {"other": 1, "ein": 1}},
            {"name": "Address", "fieldCount": 1, "categories": {"other": 1}},
        ]
        assert [f["section"] for f in payload["fields"]] == ["Business", "Business", "Address"]


class TestToDict:
    """Message payload shape consumed by the messaging collaborator."""

    def test_top_level_keys(self):
        payload = make_result().to_dict()
        assert set(payload) == {
            "url",
            "urlPattern",
            "urlRoot",
            "state",
            "isBusinessRegistrationForm",
            "confidenceScore",
            "confidenceBreakdown",
            "formType",
            "specificFormDetails",
            "formStructure",
            "adaptiveConfidence",
            "fields",
            "sections",
            "details",
            "timestamp",
            "attempt",
            "fallbackMode",
            "error",
        }
        assert payload["formType"] == "tax_registration"

    def test_field_payload(self):
        f = _field(
            type=FieldType.SELECT,
            options=(FieldOption("llc", "LLC", checked=True),),
            element=object(),
        )
        payload = make_result(fields=(ClassifiedField(f, Classification("ein", 98, "fein")),)).to_dict()
        field = payload["fields"][0]
        assert field["type"] == "select"
        assert field["label"] == {"text": "FEIN", "source": "label_for"}
        assert field["options"] == [{"value": "llc", "label": "LLC", "checked": True}]
        assert field["classification"] == {"category": "ein", "confidence": 98, "matchedPattern": "fein"}
        assert field["section"] == ""
        assert "element" not in field

    def test_json_serializable(self):
        fields = (ClassifiedField(_field(element=object()), Classification("ein", 98)),)
        json.dumps(make_result(fields=fields).to_dict())

    def test_details_block(self):
        details = make_result(reasons=("a", "b"), scan_truncated=True).to_dict()["details"]
        assert details["reasons"] == ["a", "b"]
        assert details["scanTruncated"] is True
