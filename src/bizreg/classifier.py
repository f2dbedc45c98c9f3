# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Field classifier: map a candidate field to a taxonomy category.

Scoring per category (best pattern wins):
  - pattern matches the label text          → pattern weight
  - pattern matches only name/id/placeholder → pattern weight - 10
  - input type hint (email, tel, url, date) → hint weight

The highest-scoring category wins; ties go to the category defined first.
No match yields ``other`` at 50.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from . import UNCLASSIFIED, CandidateField, Classification, ClassifiedField, LabelSource
from .dom import humanize
from .errors import ClassificationError
from .taxonomy import TYPE_HINTS, CompiledCategory, Taxonomy, load_taxonomy

logger = logging.getLogger("bizreg.classifier")

ATTRIBUTE_ONLY_PENALTY = 10
# Labels synthesized from attributes are not evidence of their own
_DERIVED_LABEL_SOURCES = frozenset({LabelSource.NAME, LabelSource.FALLBACK})


@dataclass(frozen=True, slots=True)
class FieldText:
    """Normalized text a field is matched on."""

    label: str
    attributes: str


def field_text(f: CandidateField) -> FieldText:
    label = "" if f.label.source in _DERIVED_LABEL_SOURCES else humanize(f.label.text)
    parts = (f.name, f.id, f.placeholder, f.attributes.get("autocomplete", ""))
    attributes = " ".join(humanize(p) for p in parts if p)
    return FieldText(label=label, attributes=attributes)


class FieldClassifier:
    """Classify fields against a (jurisdiction-aware) taxonomy."""

    def __init__(self, taxonomy: Taxonomy | None = None) -> None:
        self._taxonomy = taxonomy or load_taxonomy()

    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    def classify(self, f: CandidateField, *, state: str | None = None) -> Classification:
        """Return the best category for *f*; never raises."""
        try:
            return self._best(f, self._taxonomy.for_jurisdiction(state))
        except ClassificationError as e:
            logger.warning("Classification failed for %r (%s): %s", f.label.text, e.category or "?", e)
            return UNCLASSIFIED

    def classify_all(self, fields: Iterable[CandidateField], *, state: str | None = None) -> tuple[ClassifiedField, ...]:
        return tuple(ClassifiedField(f, self.classify(f, state=state)) for f in fields)

    def _best(self, f: CandidateField, categories: tuple[CompiledCategory, ...]) -> Classification:
        text = field_text(f)
        hint = TYPE_HINTS.get(f.type.value)

        best: Classification | None = None
        for category in categories:
            score, matched = _category_score(category, text)
            if hint is not None and hint[0] == category.name and hint[1] > score:
                score, matched = hint[1], f"type={f.type.value}"
            # Strict comparison keeps the earlier category on ties
            if score > 0 and (best is None or score > best.confidence):
                best = Classification(category.name, max(0, min(100, score)), matched)

        if best is None:
            return UNCLASSIFIED
        logger.debug("Classified %r as %s (%d)", f.label.text, best.category, best.confidence)
        return best


def _category_score(category: CompiledCategory, text: FieldText) -> tuple[int, str]:
    """Best (score, pattern source) for one category.

    Raises:
        ClassificationError: If a pattern cannot be evaluated.
    """
    best_score, best_source = 0, ""
    for pattern in category.patterns:
        try:
            if text.label and pattern.regex.search(text.label):
                score = pattern.weight
            elif text.attributes and pattern.regex.search(text.attributes):
                score = pattern.weight - ATTRIBUTE_ONLY_PENALTY
            else:
                continue
        except (RecursionError, TypeError) as e:
            raise ClassificationError(f"pattern {pattern.source!r} failed: {e}", category=category.name) from e
        if score > best_score:
            best_score, best_source = score, pattern.source
    return best_score, best_source


# ---------------------------------------------------------------------------
# Summary statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldStats:
    """Classification summary over one pass's fields."""

    total: int = 0
    classified: int = 0
    avg_confidence: float = 0.0  # over classified fields only
    by_category: dict[str, int] | None = None

    @property
    def classification_rate(self) -> float:
        return self.classified / self.total if self.total else 0.0

    def categories_in(self, names: Iterable[str]) -> frozenset[str]:
        """Categories from *names* present among the classified fields."""
        present = self.by_category or {}
        return frozenset(n for n in names if present.get(n))


def summarize_fields(fields: Iterable[ClassifiedField]) -> FieldStats:
    total = 0
    confidences: list[int] = []
    by_category: dict[str, int] = {}
    for cf in fields:
        total += 1
        if cf.classification.is_classified:
            confidences.append(cf.classification.confidence)
            by_category[cf.classification.category] = by_category.get(cf.classification.category, 0) + 1
    avg = sum(confidences) / len(confidences) if confidences else 0.0
    return FieldStats(total=total, classified=len(confidences), avg_confidence=avg, by_category=by_category)
