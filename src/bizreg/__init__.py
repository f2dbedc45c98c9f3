# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""bizreg: business-registration form detection and field classification.

Inspects a page snapshot and produces a ``DetectionResult``:
- whether the page is a government business-registration form
- which jurisdiction (two-letter state code) it belongs to
- the semantic category of every visible form control
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class FieldType(StrEnum):
    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    NUMBER = "number"
    DATE = "date"
    URL = "url"
    SELECT = "select"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    FILE = "file"
    RADIO_GROUP = "radio_group"
    CHECKBOX_GROUP = "checkbox_group"


class LabelSource(StrEnum):
    """Where a field's label text was resolved from."""

    ARIA_LABEL = "aria_label"
    ARIA_LABELLEDBY = "aria_labelledby"
    LABEL_FOR = "label_for"
    ANCESTOR_LABEL = "ancestor_label"
    PRECEDING_TEXT = "preceding_text"
    PLACEHOLDER = "placeholder"
    NAME = "name"
    LEGEND = "legend"
    HEADING = "heading"
    FALLBACK = "fallback"


class FormType(StrEnum):
    GENERAL = "general"
    ENTITY_FORMATION = "entity_formation"
    TAX_REGISTRATION = "tax_registration"
    COMPLIANCE_FILING = "compliance_filing"
    FOREIGN_QUALIFICATION = "foreign_qualification"


class LifecycleState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Label:
    text: str
    source: LabelSource


@dataclass(frozen=True, slots=True)
class Position:
    """Document coordinates in CSS pixels (zero when no layout is known)."""

    top: int = 0
    left: int = 0
    width: int = 0
    height: int = 0


@dataclass(frozen=True, slots=True)
class FieldOption:
    value: str
    label: str
    checked: bool = False


@dataclass(frozen=True)
class CandidateField:
    """A visible form control (or merged radio/checkbox group) found by the scanner."""

    type: FieldType
    name: str
    id: str
    label: Label
    placeholder: str = ""
    required: bool = False
    position: Position = Position()
    attributes: Mapping[str, str] = field(default_factory=dict)
    options: tuple[FieldOption, ...] = ()
    dom_index: int = 0
    ref: str = ""  # data-bizreg-ref of the live element (empty for static snapshots)
    section: str = ""  # fieldset legend or heading the control sits under
    element: Any = field(default=None, repr=False, compare=False)  # host-owned node

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


@dataclass(frozen=True, slots=True)
class Classification:
    category: str
    confidence: int  # 0-100
    matched_pattern: str = ""  # diagnostics only

    @property
    def is_classified(self) -> bool:
        return self.category != OTHER_CATEGORY


OTHER_CATEGORY = "other"
OTHER_SECTION = "Other Fields"
UNCLASSIFIED = Classification(category=OTHER_CATEGORY, confidence=50)


@dataclass(frozen=True, slots=True)
class ClassifiedField:
    field: CandidateField
    classification: Classification


# ---------------------------------------------------------------------------
# Detection result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FormStructure:
    is_multi_step: bool = False
    has_progress: bool = False
    estimated_steps: int = 1


@dataclass(frozen=True, slots=True)
class PartialScores:
    """Independent partial scores that fed the aggregate confidence."""

    url: int = 0
    content: int = 0
    structural: int = 0
    dynamic_loading: int = 0
    adaptive: int = 0


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detection pass. Immutable once produced."""

    url: str
    url_pattern: str
    url_root: str
    state: str | None
    is_business_registration_form: bool
    confidence_score: int
    confidence_breakdown: Mapping[str, int]
    form_type: FormType
    fields: tuple[ClassifiedField, ...]
    timestamp: str
    attempt: int
    fallback_mode: bool = False
    error: str | None = None
    form_details: Mapping[str, str] = field(default_factory=dict)
    form_structure: FormStructure = FormStructure()
    scores: PartialScores = PartialScores()
    adaptive_override: bool = False
    reasons: tuple[str, ...] = ()
    scan_truncated: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_score <= 100:
            raise ValueError(f"confidence_score out of range: {self.confidence_score}")
        object.__setattr__(self, "confidence_breakdown", MappingProxyType(dict(self.confidence_breakdown)))
        object.__setattr__(self, "form_details", MappingProxyType(dict(self.form_details)))

    @classmethod
    def fallback(cls, url: str, *, attempts: int, url_pattern: str = "", url_root: str = "") -> DetectionResult:
        """Terminal result produced when every attempt failed."""
        return cls(
            url=url,
            url_pattern=url_pattern,
            url_root=url_root,
            state=None,
            is_business_registration_form=False,
            confidence_score=0,
            confidence_breakdown={},
            form_type=FormType.GENERAL,
            fields=(),
            timestamp=utc_timestamp(),
            attempt=attempts,
            fallback_mode=True,
            error=f"Detection failed after {attempts} attempts",
        )

    @property
    def classified_fields(self) -> list[ClassifiedField]:
        return [f for f in self.fields if f.classification.is_classified]

    def sections(self) -> dict[str, list[ClassifiedField]]:
        """Fields grouped by form section, in order of first appearance.

        Fields outside any section go under ``OTHER_SECTION``; a page with no
        named sections at all yields an empty mapping.
        """
        if not any(cf.field.section for cf in self.fields):
            return {}
        groups: dict[str, list[ClassifiedField]] = {}
        for cf in self.fields:
            groups.setdefault(cf.field.section or OTHER_SECTION, []).append(cf)
        return groups

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe payload for the messaging collaborator (element handles excluded)."""
        return {
            "url": self.url,
            "urlPattern": self.url_pattern,
            "urlRoot": self.url_root,
            "state": self.state,
            "isBusinessRegistrationForm": self.is_business_registration_form,
            "confidenceScore": self.confidence_score,
            "confidenceBreakdown": dict(self.confidence_breakdown),
            "formType": self.form_type.value,
            "specificFormDetails": dict(self.form_details),
            "formStructure": {
                "isMultiStep": self.form_structure.is_multi_step,
                "hasProgress": self.form_structure.has_progress,
                "estimatedSteps": self.form_structure.estimated_steps,
            },
            "adaptiveConfidence": self.adaptive_override,
            "fields": [_field_to_dict(f) for f in self.fields],
            "sections": [_section_to_dict(name, fields) for name, fields in self.sections().items()],
            "details": {
                "urlScore": self.scores.url,
                "contentScore": self.scores.content,
                "formScore": self.scores.structural,
                "dynamicLoadingScore": self.scores.dynamic_loading,
                "adaptiveScore": self.scores.adaptive,
                "reasons": list(self.reasons),
                "scanTruncated": self.scan_truncated,
            },
            "timestamp": self.timestamp,
            "attempt": self.attempt,
            "fallbackMode": self.fallback_mode,
            "error": self.error,
        }


def _field_to_dict(cf: ClassifiedField) -> dict[str, Any]:
    f = cf.field
    return {
        "ref": f.ref,
        "type": f.type.value,
        "name": f.name,
        "id": f.id,
        "label": {"text": f.label.text, "source": f.label.source.value},
        "placeholder": f.placeholder,
        "required": f.required,
        "position": {
            "top": f.position.top,
            "left": f.position.left,
            "width": f.position.width,
            "height": f.position.height,
        },
        "attributes": dict(f.attributes),
        "options": [{"value": o.value, "label": o.label, "checked": o.checked} for o in f.options],
        "section": f.section,
        "classification": {
            "category": cf.classification.category,
            "confidence": cf.classification.confidence,
            "matchedPattern": cf.classification.matched_pattern,
        },
    }


def _section_to_dict(name: str, fields: list[ClassifiedField]) -> dict[str, Any]:
    categories: dict[str, int] = {}
    for cf in fields:
        categories[cf.classification.category] = categories.get(cf.classification.category, 0) + 1
    return {"name": name, "fieldCount": len(fields), "categories": categories}
