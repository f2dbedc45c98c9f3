# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content fingerprinting for significant-change detection.

The lifecycle captures a fingerprint after each pass and again once mutation
notifications settle.  A change is significant (and resets detection) when
the number of forms changes, the title changes, or the number of form
controls moves by more than ``input_delta``.  Body length alone never is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from playwright.async_api import Page

from .dom import PageSnapshot, element_text

logger = logging.getLogger("bizreg.fingerprint")

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentFingerprint:
    """Form-related shape of the page at one moment."""

    form_count: int
    input_count: int
    title: str
    body_length: int


@dataclass
class ContentChangeVerdict:
    """Result of comparing two fingerprints."""

    changed: bool
    reasons: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

_FINGERPRINT_JS = """(() => ({
  formCount: document.querySelectorAll('form').length,
  inputCount: document.querySelectorAll('input,select,textarea').length,
  title: document.title || '',
  bodyLength: document.body ? document.body.innerHTML.length : 0
}))()"""


async def capture_fingerprint(page: Page) -> ContentFingerprint | None:
    """Capture a fingerprint from a Playwright page. Returns None on any failure."""
    try:
        raw = await page.evaluate(_FINGERPRINT_JS)
    except Exception:
        logger.debug("Content fingerprint capture failed", exc_info=True)
        return None
    if not isinstance(raw, dict):
        return None
    return ContentFingerprint(
        form_count=int(raw.get("formCount", 0)),
        input_count=int(raw.get("inputCount", 0)),
        title=str(raw.get("title", "")),
        body_length=int(raw.get("bodyLength", 0)),
    )


def fingerprint_snapshot(snapshot: PageSnapshot) -> ContentFingerprint:
    """Same fingerprint, computed from a static snapshot."""
    return ContentFingerprint(
        form_count=sum(1 for _ in snapshot.iter_tags("form")),
        input_count=sum(1 for _ in snapshot.iter_tags("input", "select", "textarea")),
        title=snapshot.title,
        body_length=len(element_text(snapshot.body)),
    )


# ---------------------------------------------------------------------------
# Detection (pure function)
# ---------------------------------------------------------------------------


def detect_content_change(
    before: ContentFingerprint | None,
    after: ContentFingerprint | None,
    *,
    input_delta: int = 5,
) -> ContentChangeVerdict:
    """Compare two fingerprints.

    None inputs → not changed (graceful skip).
    """
    if before is None or after is None:
        return ContentChangeVerdict(changed=False)

    reasons: list[str] = []
    if before.form_count != after.form_count:
        reasons.append(f"form count {before.form_count} -> {after.form_count}")
    if before.title != after.title:
        reasons.append("title changed")
    diff = after.input_count - before.input_count
    if abs(diff) > input_delta:
        direction = "increased" if diff > 0 else "decreased"
        reasons.append(f"form controls {direction} by {abs(diff)}")

    return ContentChangeVerdict(changed=bool(reasons), reasons=reasons)
