# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page snapshot model: lxml document + optional layout captured from a live page.

The engine never touches a live DOM directly.  A host produces a
``PageSnapshot`` either from a Playwright page (``capture_snapshot``), which
stamps every form control with ``data-bizreg-ref`` and records its bounding
box and computed style, or from plain HTML (``PageSnapshot.from_html``), in
which case visibility falls back to static attribute/inline-style checks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

import lxml.html
from lxml import etree
from playwright.async_api import Page

from . import Position
from .errors import SnapshotError

logger = logging.getLogger("bizreg.dom")

REF_ATTR = "data-bizreg-ref"

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
CONTROL_TAGS = frozenset({"input", "select", "textarea", "button"})
_NON_TEXT_TAGS = frozenset({"script", "style", "noscript", "template"})

_STYLE_HIDDEN_RE = re.compile(
    r"(?:^|;)\s*(?:display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(?:\.0*)?\s*(?:;|$))",
    re.IGNORECASE,
)
_WS_RE = re.compile(r"\s+")
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS_RE = re.compile(r"[-_.\[\]]+")

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ElementBox:
    """Viewport-relative bounding box plus the computed style bits visibility needs."""

    top: float
    left: float
    width: float
    height: float
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0

    @property
    def is_rendered(self) -> bool:
        return (
            self.width > 0
            and self.height > 0
            and self.display != "none"
            and self.visibility != "hidden"
            and self.opacity > 0
        )


@dataclass(frozen=True, slots=True)
class Viewport:
    width: int
    height: int
    scroll_x: float = 0.0
    scroll_y: float = 0.0

    def intersects(self, box: ElementBox, tolerance: int) -> bool:
        """Vertical intersection with the viewport expanded by *tolerance* px."""
        return box.top < self.height + tolerance and box.top + box.height > -tolerance


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def element_text(el: Any, *, exclude: frozenset[str] = frozenset()) -> str:
    """Whitespace-collapsed text of *el*, skipping scripts/styles and any *exclude* tags."""
    parts: list[str] = []
    _collect_text(el, parts, exclude)
    return collapse_ws("".join(parts))


def _collect_text(node: Any, parts: list[str], exclude: frozenset[str]) -> None:
    if node.text and isinstance(node.tag, str):
        parts.append(node.text)
    for child in node:
        # Comments and processing instructions have a non-str tag
        if isinstance(child.tag, str):
            tag = child.tag.lower()
            if tag not in _NON_TEXT_TAGS and tag not in exclude:
                _collect_text(child, parts, exclude)
        if child.tail:
            parts.append(child.tail)


def clean_label_text(text: str) -> str:
    """Collapse whitespace and strip trailing required-markers / colons."""
    cleaned = collapse_ws(text)
    while cleaned and cleaned[-1] in "*:":
        cleaned = cleaned[:-1].rstrip()
    return cleaned


def humanize(name: str) -> str:
    """``businessName`` / ``business_name`` / ``business-name`` → ``business name``."""
    spaced = _CAMEL_RE.sub(r"\1 \2", name)
    spaced = _SEPARATORS_RE.sub(" ", spaced)
    return collapse_ws(spaced).lower()


def tag_of(el: Any) -> str:
    tag = el.tag
    return tag.lower() if isinstance(tag, str) else ""


def is_statically_hidden(el: Any) -> bool:
    """Visibility check used when no layout data exists for *el*."""
    if tag_of(el) == "input" and (el.get("type") or "").lower() == "hidden":
        return True
    node = el
    while node is not None and isinstance(node.tag, str):
        if node.get("hidden") is not None:
            return True
        style = node.get("style")
        if style and _STYLE_HIDDEN_RE.search(style):
            return True
        node = node.getparent()
    return False


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class PageSnapshot:
    """Immutable view of one page at one point in time."""

    url: str
    title: str
    root: Any  # lxml.html.HtmlElement (document element)
    boxes: Mapping[str, ElementBox] = field(default_factory=dict)
    viewport: Viewport | None = None

    @classmethod
    def from_html(
        cls,
        html: str,
        url: str,
        *,
        title: str | None = None,
        boxes: Mapping[str, ElementBox] | None = None,
        viewport: Viewport | None = None,
    ) -> PageSnapshot:
        """Parse *html* into a snapshot.

        Raises:
            SnapshotError: If lxml cannot build a document at all.
        """
        source = html if html and html.strip() else "<html><body></body></html>"
        try:
            parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
            root = lxml.html.document_fromstring(source.encode("utf-8"), parser=parser)
        except (etree.ParserError, ValueError) as e:
            raise SnapshotError(f"lxml parsing failed: {e}") from e
        if title is None:
            title_el = root.find(".//title")
            title = collapse_ws(title_el.text_content()) if title_el is not None else ""
        return cls(url=url, title=title, root=root, boxes=dict(boxes or {}), viewport=viewport)

    @property
    def has_layout(self) -> bool:
        return bool(self.boxes)

    @cached_property
    def body(self) -> Any:
        body = self.root.find(".//body")
        return body if body is not None else self.root

    @cached_property
    def page_text(self) -> str:
        """Body text, roughly what ``document.body.textContent`` yields."""
        return element_text(self.body)

    @cached_property
    def page_text_lower(self) -> str:
        return self.page_text.lower()

    @cached_property
    def headings(self) -> tuple[tuple[str, str], ...]:
        """``(tag, lowercase text)`` for every h1-h6 in document order."""
        out: list[tuple[str, str]] = []
        for el in self.body.iter(*HEADING_TAGS):
            text = element_text(el).lower()
            if text:
                out.append((tag_of(el), text))
        return tuple(out)

    @cached_property
    def meta_description(self) -> str:
        for meta in self.root.iter("meta"):
            if (meta.get("name") or "").lower() == "description":
                return (meta.get("content") or "").lower()
        return ""

    def iter_tags(self, *tags: str) -> Iterator[Any]:
        return self.body.iter(*tags)

    def box_for(self, el: Any) -> ElementBox | None:
        ref = el.get(REF_ATTR)
        if ref is None:
            return None
        return self.boxes.get(ref)

    def is_visible(self, el: Any, *, tolerance: int = 100, viewport_only: bool = True) -> bool:
        box = self.box_for(el)
        if box is None:
            return not is_statically_hidden(el)
        if not box.is_rendered:
            return False
        if viewport_only and self.viewport is not None:
            return self.viewport.intersects(box, tolerance)
        return True

    def position_for(self, el: Any) -> Position:
        box = self.box_for(el)
        if box is None:
            return Position()
        sx = self.viewport.scroll_x if self.viewport else 0.0
        sy = self.viewport.scroll_y if self.viewport else 0.0
        return Position(
            top=round(box.top + sy),
            left=round(box.left + sx),
            width=round(box.width),
            height=round(box.height),
        )


# ---------------------------------------------------------------------------
# Live capture: single evaluate() round trip
# ---------------------------------------------------------------------------

_CAPTURE_JS = """(() => {
  const ATTR = 'data-bizreg-ref';
  const SEL = 'input,select,textarea,button,.loading,.spinner,.loader,.progress,' +
    '[role=progressbar],.wait,.processing';
  let next = 0;
  for (const el of document.querySelectorAll('[' + ATTR + ']')) {
    const n = parseInt(el.getAttribute(ATTR), 10);
    if (!Number.isNaN(n) && n >= next) next = n + 1;
  }
  const boxes = {};
  for (const el of document.querySelectorAll(SEL)) {
    let ref = el.getAttribute(ATTR);
    if (ref === null) {
      ref = String(next++);
      el.setAttribute(ATTR, ref);
    }
    const r = el.getBoundingClientRect();
    const cs = window.getComputedStyle(el);
    boxes[ref] = {
      top: r.top, left: r.left, width: r.width, height: r.height,
      display: cs.display, visibility: cs.visibility,
      opacity: parseFloat(cs.opacity)
    };
  }
  return {
    url: location.href,
    title: document.title || '',
    html: document.documentElement ? document.documentElement.outerHTML : '',
    viewport: {
      width: window.innerWidth, height: window.innerHeight,
      scrollX: window.scrollX, scrollY: window.scrollY
    },
    boxes: boxes
  };
})()"""


def _box_from_raw(raw: Mapping[str, Any]) -> ElementBox:
    opacity = raw.get("opacity", 1.0)
    return ElementBox(
        top=float(raw.get("top", 0.0)),
        left=float(raw.get("left", 0.0)),
        width=float(raw.get("width", 0.0)),
        height=float(raw.get("height", 0.0)),
        display=str(raw.get("display", "block")),
        visibility=str(raw.get("visibility", "visible")),
        opacity=1.0 if opacity is None else float(opacity),
    )


def snapshot_from_capture(raw: Mapping[str, Any]) -> PageSnapshot:
    """Build a snapshot from the dict returned by the capture script."""
    boxes: dict[str, ElementBox] = {}
    for ref, box in (raw.get("boxes") or {}).items():
        try:
            boxes[str(ref)] = _box_from_raw(box)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed box for ref %s", ref)
    vp = raw.get("viewport") or {}
    viewport = Viewport(
        width=int(vp.get("width", 0)),
        height=int(vp.get("height", 0)),
        scroll_x=float(vp.get("scrollX", 0.0)),
        scroll_y=float(vp.get("scrollY", 0.0)),
    )
    return PageSnapshot.from_html(
        raw.get("html") or "",
        raw.get("url") or "",
        title=raw.get("title") or "",
        boxes=boxes,
        viewport=viewport,
    )


async def capture_snapshot(page: Page) -> PageSnapshot:
    """Capture a ``PageSnapshot`` from a Playwright page.

    Raises:
        SnapshotError: If evaluation fails or returns an unexpected payload.
    """
    try:
        raw = await page.evaluate(_CAPTURE_JS)
    except Exception as e:
        raise SnapshotError(f"snapshot capture failed: {e}") from e
    if not isinstance(raw, dict):
        raise SnapshotError(f"snapshot capture returned {type(raw).__name__}")
    return snapshot_from_capture(raw)
