# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Confidence aggregation: capped category points → one 0-100 score.

Each category is capped on its own, the sum is clamped to 100:

    domain               ≤20   government host, .gov, jurisdiction portal
    urlPattern           ≤15   registration terms in the URL
    formFields           ≤20   structural + dynamic-loading scores
    stateIdentification  ≤15   resolved state, URL agreement, site markers
    fieldClassification  ≤25   classification rate, confidence, business fields
    businessTerminology  ≤15   business vocabulary in the page text
    adaptive             ≤15   prior user confirmations for this URL pattern

The registration decision is a disjunction: any one strong signal can carry
it even when the others are weak.  On a page with no forms and no inputs
only the adaptive override can decide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .classifier import FieldStats
from .content_signals import ContentAnalysis
from .form_structure import StructureAnalysis
from .jurisdictions import JURISDICTION_MARKERS
from .url_signals import UrlAnalysis

logger = logging.getLogger("bizreg.aggregator")

DETECTION_THRESHOLD = 50

CATEGORY_CAPS: dict[str, int] = {
    "domain": 20,
    "urlPattern": 15,
    "formFields": 20,
    "stateIdentification": 15,
    "fieldClassification": 25,
    "businessTerminology": 15,
    "adaptive": 15,
}

# business_name, entity_type, ein, tax_id, business_address plus dba
AGGREGATE_BUSINESS_CATEGORIES = ("business_name", "entity_type", "ein", "tax_id", "business_address", "dba")


@dataclass(frozen=True, slots=True)
class Verdict:
    confidence_score: int
    breakdown: dict[str, int]
    is_business_registration_form: bool
    adaptive_override: bool = False
    rules: tuple[str, ...] = ()  # decision rules that fired


def marker_hits(state: str | None, url: str, content: ContentAnalysis) -> tuple[int, bool]:
    """(jurisdiction marker hits, URL is one of its business portals)."""
    markers = JURISDICTION_MARKERS.get(state or "")
    if markers is None:
        return 0, False
    host_hits = sum(1 for host in markers.hosts if host in url)
    on_business_host = any(host in url for host in markers.business_hosts)
    return host_hits + content.marker_hits.get(state or "", 0), on_business_host


class ConfidenceAggregator:
    """Combine partial analyses into a ``Verdict``. Deterministic and pure."""

    def __init__(self, business_categories: tuple[str, ...] = AGGREGATE_BUSINESS_CATEGORIES) -> None:
        self._business_categories = business_categories

    def aggregate(
        self,
        *,
        url: UrlAnalysis,
        content: ContentAnalysis,
        structure: StructureAnalysis,
        stats: FieldStats,
        state: str | None,
        adaptive_score: int = 0,
        adaptive_override: bool = False,
    ) -> Verdict:
        breakdown = dict.fromkeys(CATEGORY_CAPS, 0)
        site_bonus = False

        if url.is_government:
            breakdown["domain"] = 15
            if ".gov" in url.url:
                breakdown["domain"] += 5

        if url.business_terms:
            breakdown["urlPattern"] = 10 + 2 * len(url.business_terms)

        adjusted_form_score = structure.score + structure.dynamic_loading_score
        if adjusted_form_score > 0:
            breakdown["formFields"] = round(adjusted_form_score * 0.2)

        if state:
            breakdown["stateIdentification"] = 10
            if url.state == state:
                breakdown["stateIdentification"] += 5
            hits, on_business_host = marker_hits(state, url.url, content)
            markers = JURISDICTION_MARKERS.get(state)
            if markers is not None and hits >= markers.min_hits:
                breakdown["stateIdentification"] = 15
                if on_business_host:
                    site_bonus = True
                    breakdown["domain"] += 5

        business = stats.categories_in(self._business_categories)
        if stats.total:
            points = round(stats.classification_rate * 10)
            if stats.avg_confidence >= 80:
                points += 10
            elif stats.avg_confidence >= 70:
                points += 5
            if len(business) >= 3:
                points += 5
            elif len(business) >= 2:
                points += 3
            breakdown["fieldClassification"] = points

        if content.business_term_count > 0:
            breakdown["businessTerminology"] = 10 + content.business_term_count // 5 + content.score // 25
        if site_bonus:
            breakdown["businessTerminology"] += 5

        breakdown["adaptive"] = adaptive_score
        for name, cap in CATEGORY_CAPS.items():
            breakdown[name] = max(0, min(breakdown[name], cap))
        score = max(0, min(sum(breakdown.values()), 100))

        rules: list[str] = []
        # A page without a single form control is never a form on its own evidence
        if structure.form_count or structure.input_count:
            if score >= DETECTION_THRESHOLD:
                rules.append(f"score>={DETECTION_THRESHOLD}")
            if stats.classification_rate >= 0.5 and stats.avg_confidence >= 70 and len(business) >= 2:
                rules.append("strong field detection with business fields")
            if url.score >= 60 and structure.score >= 30 and len(business) >= 1:
                rules.append("registration URL with form elements")
            if state and stats.classified >= 5:
                rules.append("state with 5+ classified fields")
        if adaptive_override:
            rules.append("adaptive override")

        logger.debug(
            "Confidence %s = %d (rules: %s)",
            " + ".join(f"{k}({v})" for k, v in breakdown.items() if v),
            score,
            ", ".join(rules) or "none",
        )
        return Verdict(
            confidence_score=score,
            breakdown=breakdown,
            is_business_registration_form=bool(rules),
            adaptive_override=adaptive_override,
            rules=tuple(rules),
        )
