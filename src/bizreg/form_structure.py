# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Structural form analysis.

Scores how much the page *looks* like a registration form, independent of
what its text says: classified fields, form containers, wizard navigation,
registration-style submit buttons, payment and document-upload inputs.
A separate dynamic-loading score notes pages that are still assembling
their form.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from . import ClassifiedField, FormStructure
from .classifier import FieldStats, summarize_fields
from .dom import PageSnapshot, element_text, tag_of

logger = logging.getLogger("bizreg.form_structure")

STRUCTURAL_BUSINESS_CATEGORIES = ("business_name", "entity_type", "ein", "tax_id", "business_address")

_STEP_CLASSES = frozenset({"step", "wizard-step", "form-step"})
_PROGRESS_CLASSES = frozenset({"progress", "progress-bar"})
_LOADING_CLASSES = frozenset({"loading", "spinner", "loader", "progress", "wait", "processing"})
_LOADING_SUBSTRINGS = ("loading", "spinner", "progress", "wait", "processing")

_NEXT_WORDS = ("next", "continue", "proceed", "forward")
_PREV_WORDS = ("previous", "back", "return", "prior")
_SUBMIT_TERMS = (
    "register", "file", "submit", "form", "create", "incorporate", "establish", "start business",
    "complete registration", "continue registration", "file now", "file articles", "save filing",
    "submit application",
)  # fmt: skip
_PAYMENT_NAME_PARTS = ("card", "credit", "payment", "ccnumber", "cc-number", "cvc", "cvv", "expir", "fee")
_DOCUMENT_TERMS = (
    "articles", "certificate", "operating agreement", "bylaws", "proof", "identification",
    "documentation", "verification", "business document", "supporting document",
)  # fmt: skip


@dataclass(frozen=True, slots=True)
class StructureAnalysis:
    score: int  # 0-100
    dynamic_loading_score: int
    form_count: int
    input_count: int
    structure: FormStructure
    reasons: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def _classes(el: Any) -> list[str]:
    return (el.get("class") or "").lower().split()


def _button_text(el: Any) -> str:
    return (element_text(el) or el.get("value") or "").lower()


def _buttons(snapshot: PageSnapshot) -> list[Any]:
    out = []
    for el in snapshot.body.iter():
        tag = tag_of(el)
        if tag == "button":
            out.append(el)
        elif tag == "input" and (el.get("type") or "").lower() in ("button", "submit"):
            out.append(el)
        elif "btn" in _classes(el) or (tag == "a" and "button" in _classes(el)):
            out.append(el)
    return out


def _submit_buttons(snapshot: PageSnapshot) -> list[Any]:
    out = []
    for el in snapshot.body.iter():
        tag = tag_of(el)
        kind = (el.get("type") or "").lower()
        classes = _classes(el)
        if (
            (tag == "button" and kind in ("", "submit"))
            or (tag == "input" and kind == "submit")
            or "btn-primary" in classes
            or "submit-button" in classes
        ):
            out.append(el)
    return out


def _has_any(snapshot: PageSnapshot, classes: frozenset[str], *, progressbar: bool = False) -> int:
    count = 0
    for el in snapshot.body.iter():
        if not isinstance(el.tag, str):
            continue
        if classes.intersection(_classes(el)) or (progressbar and el.get("role") == "progressbar"):
            count += 1
    return count


def _file_label(snapshot: PageSnapshot, el: Any) -> str:
    parent = el.getparent()
    while parent is not None:
        if tag_of(parent) == "label":
            return element_text(parent).lower()
        parent = parent.getparent()
    el_id = el.get("id")
    if el_id:
        for label in snapshot.iter_tags("label"):
            if label.get("for") == el_id:
                return element_text(label).lower()
    return ""


def _is_captcha(el: Any) -> bool:
    if not isinstance(el.tag, str):
        return False
    classes = (el.get("class") or "").lower()
    if "captcha" in classes or "captcha" in (el.get("id") or "").lower():
        return True
    return tag_of(el) == "iframe" and "recaptcha" in (el.get("src") or "").lower()


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def field_score(stats: FieldStats, reasons: list[str]) -> int:
    """Points for the classified fields of the pass."""
    if not stats.total:
        return 0
    score = min(stats.total * 2, 20)
    if stats.classified:
        score += round(stats.classification_rate * 20)
        business = stats.categories_in(STRUCTURAL_BUSINESS_CATEGORIES)
        score += 10 * len(business)
        if len(business) >= 3:
            score += 20
        if stats.avg_confidence >= 80:
            score += 10
        reasons.append(
            f"{stats.classified}/{stats.total} fields classified, business categories: {sorted(business) or 'none'}"
        )
    return score


def detect_form_structure(snapshot: PageSnapshot) -> FormStructure:
    steps = _has_any(snapshot, _STEP_CLASSES)
    step_markers = steps + _has_any(snapshot, frozenset(), progressbar=True)
    has_progress = _has_any(snapshot, _PROGRESS_CLASSES, progressbar=True) > 0
    next_button = any(any(w in _button_text(b) for w in _NEXT_WORDS) for b in _buttons(snapshot))
    return FormStructure(
        is_multi_step=step_markers > 0 or next_button,
        has_progress=has_progress,
        estimated_steps=steps or 1,
    )


def dynamic_loading_score(snapshot: PageSnapshot) -> int:
    """+10 for a visible loading indicator, +5 for async/defer scripts."""
    score = 0
    for el in snapshot.body.iter():
        if not isinstance(el.tag, str):
            continue
        classes = (el.get("class") or "").lower()
        indicator = (
            _LOADING_CLASSES.intersection(classes.split())
            or el.get("role") == "progressbar"
            or any(s in classes for s in _LOADING_SUBSTRINGS)
        )
        if indicator and snapshot.is_visible(el, viewport_only=False):
            score += 10
            break
    for script in snapshot.root.iter("script"):
        if script.get("async") is not None or script.get("defer") is not None:
            score += 5
            break
    return score


def analyze_form_structure(snapshot: PageSnapshot, fields: Iterable[ClassifiedField]) -> StructureAnalysis:
    """Structural score of *snapshot* given the classified *fields* of the pass."""
    fields = tuple(fields)
    reasons: list[str] = []
    stats = summarize_fields(fields)
    score = field_score(stats, reasons)

    form_count = sum(1 for _ in snapshot.iter_tags("form"))
    inputs = list(snapshot.iter_tags("input", "select", "textarea"))
    input_count = len(inputs)
    structure = detect_form_structure(snapshot)

    if form_count:
        score += 15
        reasons.append(f"{form_count} form(s) present")
        if _has_any(snapshot, _STEP_CLASSES, progressbar=True):
            score += 10
            reasons.append("step indicators")
        buttons = _buttons(snapshot)
        has_next = any(any(w in _button_text(b) for w in _NEXT_WORDS) for b in buttons)
        has_prev = any(any(w in _button_text(b) for w in _PREV_WORDS) for b in buttons)
        if has_next and has_prev:
            score += 10
            reasons.append("next/previous navigation")
        if form_count > 1:
            score += 5
    elif input_count >= 5:
        score += 15
        reasons.append(f"{input_count} inputs without a form element")
    elif input_count >= 3:
        score += 10
        reasons.append(f"{input_count} inputs without a form element")

    if form_count or input_count:
        score += _context_score(snapshot, inputs, reasons)

    if score:
        logger.debug("Structural score %d for %s", min(score, 100), snapshot.url)
    return StructureAnalysis(
        score=min(score, 100),
        dynamic_loading_score=dynamic_loading_score(snapshot),
        form_count=form_count,
        input_count=input_count,
        structure=structure,
        reasons=tuple(reasons),
    )


def _context_score(snapshot: PageSnapshot, inputs: list[Any], reasons: list[str]) -> int:
    score = 0
    submit_text = " ".join(_button_text(b) for b in _submit_buttons(snapshot))
    term = next((t for t in _SUBMIT_TERMS if t in submit_text), None)
    if term:
        score += 10
        reasons.append(f"registration submit button ({term!r})")

    payment = [
        el
        for el in inputs
        if tag_of(el) == "input" and any(p in (el.get("name") or "").lower() for p in _PAYMENT_NAME_PARTS)
    ]
    if len(payment) >= 3:
        score += 10
        reasons.append("payment inputs")

    uploads = [el for el in inputs if tag_of(el) == "input" and (el.get("type") or "").lower() == "file"]
    if uploads:
        score += 5
        labels = " ".join(_file_label(snapshot, el) for el in uploads)
        if any(t in labels for t in _DOCUMENT_TERMS):
            score += 10
            reasons.append("document upload")

    if any(_is_captcha(el) for el in snapshot.body.iter()):
        score += 5
        reasons.append("captcha present")
    return score
