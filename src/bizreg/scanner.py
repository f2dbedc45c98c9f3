# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Field scanner: enumerate visible form controls and resolve their labels.

Two passes over the snapshot:
  1. every ``<form>`` (or the whole body when the page has none)
  2. controls outside any form ("orphaned" fields)

Both passes share one scanned-element set, so a control is reported once.
Radio buttons sharing a ``name`` collapse into one ``radio_group`` field;
checkboxes sharing a ``name`` collapse into one ``checkbox_group``.

Label resolution, first hit wins:
  aria-label → aria-labelledby → <label for> → ancestor <label> →
  preceding text / sibling → placeholder → humanized name → "Unlabeled field"

Each field also carries its form section: the legend of the nearest fieldset,
else the last heading before it inside the same form.

The scan is bounded by ``max_elements`` and a soft wall-clock budget; running
out of either truncates the scan and returns what was found so far.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from lxml import etree

from . import CandidateField, FieldOption, FieldType, Label, LabelSource
from .config import DetectorConfig
from .dom import (
    CONTROL_TAGS,
    HEADING_TAGS,
    REF_ATTR,
    PageSnapshot,
    clean_label_text,
    element_text,
    humanize,
    tag_of,
)
from .errors import DetectionTimeoutError, ScanError
from .pipeline_timer import PipelineTimer

logger = logging.getLogger("bizreg.scanner")

UNLABELED = "Unlabeled field"

_FIELD_TAGS = ("input", "select", "textarea")
_SKIPPED_INPUT_TYPES = frozenset({"hidden", "submit", "button", "reset", "image", "password", "search"})
_INPUT_TYPES: dict[str, FieldType] = {
    "email": FieldType.EMAIL,
    "tel": FieldType.TEL,
    "number": FieldType.NUMBER,
    "date": FieldType.DATE,
    "url": FieldType.URL,
    "checkbox": FieldType.CHECKBOX,
    "file": FieldType.FILE,
}
_KEPT_ATTRIBUTES = ("maxlength", "pattern", "min", "max", "step", "autocomplete", "data-field-type")
# name/id tokens of controls that are never part of the business form itself
_INTERNAL_NAME_RE = re.compile(r"(?:^|[^a-z])(?:search|login|captcha|csrf|xsrf|token|honeypot)(?:[^a-z]|$)")
_LABEL_LIKE_TAGS = frozenset({"label", "span", "div", "p", "strong", "b", "em", "td", "th", "dt", "font"})
_GROUP_LABEL_CLASSES = ("form-label", "field-label")
_MIN_TEXT, _MAX_TEXT = 2, 100
_GROUP_SEARCH_DEPTH = 5
_ROW_TOLERANCE_PX = 5


@dataclass(frozen=True, slots=True)
class ScanResult:
    fields: tuple[CandidateField, ...]
    truncated: bool = False
    skipped: int = 0  # elements dropped because of ScanError
    timeout_report: dict = field(default_factory=dict)


def _input_type(el: Any) -> str:
    tag = tag_of(el)
    if tag != "input":
        return tag
    return (el.get("type") or "text").strip().lower()


def _has_controls(el: Any) -> bool:
    return tag_of(el) in CONTROL_TAGS or any(True for _ in el.iter(*CONTROL_TAGS))


def _usable_text(text: str | None) -> str | None:
    if not text:
        return None
    cleaned = clean_label_text(text)
    return cleaned if _MIN_TEXT <= len(cleaned) <= _MAX_TEXT else None


def _reading_order(a: CandidateField, b: CandidateField) -> int:
    if abs(a.position.top - b.position.top) > _ROW_TOLERANCE_PX:
        return a.position.top - b.position.top
    if a.position.left != b.position.left:
        return a.position.left - b.position.left
    return a.dom_index - b.dom_index


class FieldScanner:
    """Enumerate visible candidate fields of a snapshot."""

    def __init__(self, config: DetectorConfig | None = None) -> None:
        self._config = config or DetectorConfig()

    def scan(
        self,
        snapshot: PageSnapshot,
        *,
        state: str | None = None,
        timer: PipelineTimer | None = None,
    ) -> ScanResult:
        """Scan *snapshot* and return fields in reading order.

        *state* is accepted for interface symmetry with the classifier; label
        resolution does not depend on the jurisdiction.
        """
        timer = timer or PipelineTimer(self._config.scan_budget)
        if timer.current_stage is None:
            timer.stage("scan")
        session = _ScanSession(snapshot, self._config, timer)

        report: dict = {}
        forms = list(snapshot.iter_tags("form"))
        try:
            for container in forms or [snapshot.body]:
                session.scan_container(container)
            if forms:
                session.scan_container(snapshot.body)  # orphaned fields
        except DetectionTimeoutError as e:
            report = e.report
            logger.warning("%s (%d fields kept)", e, len(session.fields))
        except _ElementCapReached:
            logger.warning("Field scan stopped at the %d element cap", self._config.max_elements)

        truncated = bool(report) or session.capped
        fields = sorted(session.fields, key=functools.cmp_to_key(_reading_order))
        logger.debug("Scanned %d fields (%d skipped) on %s", len(fields), session.skipped, snapshot.url)
        return ScanResult(fields=tuple(fields), truncated=truncated, skipped=session.skipped, timeout_report=report)


class _ElementCapReached(Exception):
    pass


class _ScanSession:
    """State of one scan: indexes, the scanned-element set and the budget."""

    def __init__(self, snapshot: PageSnapshot, config: DetectorConfig, timer: PipelineTimer) -> None:
        self.snapshot = snapshot
        self.config = config
        self.timer = timer
        self.fields: list[CandidateField] = []
        self.scanned: set[Any] = set()
        self.processed = 0
        self.skipped = 0
        self.capped = False

        self._dom_index = {el: i for i, el in enumerate(snapshot.body.iter(*_FIELD_TAGS))}
        self._by_id: dict[str, Any] = {}
        self._labels_for: dict[str, list[Any]] = {}
        for el in snapshot.root.iter(etree.Element):
            el_id = el.get("id")
            if el_id:
                self._by_id.setdefault(el_id, el)
            if tag_of(el) == "label" and el.get("for"):
                self._labels_for.setdefault(el.get("for"), []).append(el)
        self._heading_sections = _heading_sections(snapshot.body)

    # -- budget -----------------------------------------------------------

    def _tick(self) -> None:
        """Count one element.

        Raises:
            DetectionTimeoutError: The soft scan budget ran out.
            _ElementCapReached: ``max_elements`` elements were processed.
        """
        if self.processed >= self.config.max_elements:
            self.capped = True
            raise _ElementCapReached
        if self.timer.expired():
            raise DetectionTimeoutError(
                f"Field scan truncated after {self.processed} elements ({self.timer.elapsed_ms():.0f} ms)",
                report=self.timer.timeout_report(),
            )
        self.processed += 1

    # -- passes -----------------------------------------------------------

    def scan_container(self, container: Any) -> None:
        controls = [el for el in container.iter(*_FIELD_TAGS) if el not in self.scanned]
        self._scan_groups(controls)
        for el in controls:
            if el in self.scanned:
                continue
            self._tick()
            self.scanned.add(el)
            try:
                candidate = self._single_field(el)
            except ScanError as e:
                self.skipped += 1
                logger.debug("Skipping element #%d: %s", e.dom_index, e)
                continue
            if candidate is not None:
                self.fields.append(candidate)

    def _scan_groups(self, controls: list[Any]) -> None:
        buckets: dict[tuple[str, str], list[Any]] = {}
        for el in controls:
            kind = _input_type(el)
            name = el.get("name")
            if kind in ("radio", "checkbox") and name:
                buckets.setdefault((kind, name), []).append(el)

        for (kind, name), members in buckets.items():
            if kind == "checkbox" and len(members) < 2:
                continue  # lone checkbox is an ordinary field
            self._tick()
            self.scanned.update(members)
            try:
                group = self._group_field(kind, name, members)
            except ScanError as e:
                self.skipped += 1
                logger.debug("Skipping %s group %r: %s", kind, name, e)
                continue
            if group is not None:
                self.fields.append(group)

    # -- field construction ----------------------------------------------

    def _visible(self, el: Any) -> bool:
        return self.snapshot.is_visible(
            el,
            tolerance=self.config.viewport_tolerance,
            viewport_only=self.config.viewport_only,
        )

    def _single_field(self, el: Any) -> CandidateField | None:
        index = self._dom_index.get(el, -1)
        try:
            kind = _input_type(el)
            if kind == "radio":
                return None  # unnamed radios cannot form a group
            if kind in _SKIPPED_INPUT_TYPES or not self._user_facing(el):
                return None
            if not self._visible(el):
                return None
            if kind in ("select", "textarea"):
                ftype = FieldType.SELECT if kind == "select" else FieldType.TEXTAREA
            else:
                ftype = _INPUT_TYPES.get(kind, FieldType.TEXT)
            options = _select_options(el) if ftype is FieldType.SELECT else ()
            return CandidateField(
                type=ftype,
                name=el.get("name") or "",
                id=el.get("id") or "",
                label=self.resolve_label(el),
                placeholder=(el.get("placeholder") or "").strip(),
                required=_is_required(el),
                position=self.snapshot.position_for(el),
                attributes={a: el.get(a) for a in _KEPT_ATTRIBUTES if el.get(a)},
                options=options,
                dom_index=index,
                ref=el.get(REF_ATTR) or "",
                section=self.section_for(el),
                element=el,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ScanError(f"{type(e).__name__}: {e}", dom_index=index) from e

    def _group_field(self, kind: str, name: str, members: list[Any]) -> CandidateField | None:
        visible = [el for el in members if self._visible(el)]
        if not visible:
            return None
        first = members[0]
        index = self._dom_index.get(first, -1)
        try:
            options = tuple(
                FieldOption(
                    value=el.get("value", "on"),
                    label=self._option_label(el),
                    checked=el.get("checked") is not None,
                )
                for el in members
            )
            return CandidateField(
                type=FieldType.RADIO_GROUP if kind == "radio" else FieldType.CHECKBOX_GROUP,
                name=name,
                id=first.get("id") or "",
                label=self.group_label(first, name),
                required=any(_is_required(el) for el in members),
                position=self.snapshot.position_for(visible[0]),
                attributes={a: first.get(a) for a in _KEPT_ATTRIBUTES if first.get(a)},
                options=options,
                dom_index=index,
                ref=visible[0].get(REF_ATTR) or "",
                section=self.section_for(first),
                element=first,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ScanError(f"{type(e).__name__}: {e}", dom_index=index) from e

    def _user_facing(self, el: Any) -> bool:
        ident = f"{el.get('name') or ''} {el.get('id') or ''}".lower()
        return not _INTERNAL_NAME_RE.search(ident)

    # -- labels -----------------------------------------------------------

    def resolve_label(self, el: Any) -> Label:
        aria = clean_label_text(el.get("aria-label") or "")
        if aria:
            return Label(aria, LabelSource.ARIA_LABEL)

        labelledby = el.get("aria-labelledby")
        if labelledby:
            parts = [element_text(self._by_id[i]) for i in labelledby.split() if i in self._by_id]
            text = clean_label_text(" ".join(p for p in parts if p))
            if text:
                return Label(text, LabelSource.ARIA_LABELLEDBY)

        el_id = el.get("id")
        if el_id:
            for label in self._labels_for.get(el_id, ()):
                text = clean_label_text(element_text(label, exclude=CONTROL_TAGS))
                if text:
                    return Label(text, LabelSource.LABEL_FOR)

        parent = el.getparent()
        while parent is not None:
            if tag_of(parent) == "label":
                text = clean_label_text(element_text(parent, exclude=CONTROL_TAGS))
                if text:
                    return Label(text, LabelSource.ANCESTOR_LABEL)
                break
            parent = parent.getparent()

        preceding = self._preceding_text(el)
        if preceding:
            return Label(preceding, LabelSource.PRECEDING_TEXT)

        placeholder = clean_label_text(el.get("placeholder") or "")
        if placeholder:
            return Label(placeholder, LabelSource.PLACEHOLDER)

        name = el.get("name")
        if name and humanize(name):
            return Label(humanize(name), LabelSource.NAME)

        return Label(UNLABELED, LabelSource.FALLBACK)

    def _preceding_text(self, el: Any) -> str | None:
        node = el
        for _ in range(2):  # the control itself, then a wrapping cell/div
            text = self._text_before(node, el)
            if text:
                return text
            parent = node.getparent()
            if parent is None or parent is self.snapshot.body:
                return None
            if sum(1 for _ in parent.iter(*_FIELD_TAGS)) > 1:
                return None  # wrapper shared with other controls
            node = parent
        return None

    def _text_before(self, node: Any, control: Any) -> str | None:
        prev = node.getprevious()
        if prev is not None:
            direct = prev.tail
        else:
            parent = node.getparent()
            direct = parent.text if parent is not None else None
        if text := _usable_text(direct):
            return text
        if direct and direct.strip():
            return None

        for sib in node.itersiblings(preceding=True):
            if not isinstance(sib.tag, str):
                continue
            tag = tag_of(sib)
            if tag == "br":
                continue
            if tag not in _LABEL_LIKE_TAGS or _has_controls(sib):
                return None
            if tag == "label" and sib.get("for") and sib.get("for") != control.get("id"):
                return None  # belongs to another control
            raw = element_text(sib)
            if raw:
                return _usable_text(raw)
        return None

    def group_label(self, first: Any, name: str) -> Label:
        node = first.getparent()
        while node is not None:
            if tag_of(node) == "fieldset":
                legend = node.find("legend")
                if legend is None:
                    legend = node.find(".//legend")
                if legend is not None:
                    text = clean_label_text(element_text(legend))
                    if text:
                        return Label(text, LabelSource.LEGEND)
                break
            node = node.getparent()

        common = self._common_group_label(first)
        if common:
            return Label(common, LabelSource.HEADING)
        return Label(humanize(name) or UNLABELED, LabelSource.NAME if humanize(name) else LabelSource.FALLBACK)

    def _common_group_label(self, first: Any) -> str | None:
        current = first.getparent()
        depth = 0
        while current is not None and current is not self.snapshot.body and depth < _GROUP_SEARCH_DEPTH:
            for candidate in _group_heading_candidates(current):
                text = clean_label_text(element_text(candidate))
                if text:
                    return text
            prev = current.getprevious()
            while prev is not None and not isinstance(prev.tag, str):
                prev = prev.getprevious()
            if prev is not None and tag_of(prev) != "label" and not _has_controls(prev):
                text = _usable_text(element_text(prev))
                if text:
                    return text
            current = current.getparent()
            depth += 1
        return None

    def section_for(self, el: Any) -> str:
        """Legend of the nearest fieldset that has one, else the last heading before *el*."""
        node = el.getparent()
        while node is not None and node is not self.snapshot.body:
            if tag_of(node) == "fieldset":
                legend = node.find("legend")
                if legend is not None and (text := _usable_text(element_text(legend))):
                    return text
            node = node.getparent()
        return self._heading_sections.get(el, "")

    def _option_label(self, el: Any) -> str:
        label = self.resolve_label(el)
        if label.source in (LabelSource.NAME, LabelSource.FALLBACK, LabelSource.PLACEHOLDER):
            return el.get("value", "")
        return label.text


def _group_heading_candidates(container: Any) -> Iterable[Any]:
    for el in container.iter(*HEADING_TAGS):
        yield el
    for el in container.iter(etree.Element):
        classes = (el.get("class") or "").split()
        if any(c in classes for c in _GROUP_LABEL_CLASSES):
            yield el


def _section_container(el: Any, body: Any) -> Any:
    node = el.getparent()
    while node is not None and node is not body:
        if tag_of(node) == "form":
            return node
        node = node.getparent()
    return body


def _heading_sections(body: Any) -> dict[Any, str]:
    """Map each control to the last h1-h6 preceding it in its own form.

    Controls outside any form only see headings outside any form.
    """
    current: dict[Any, str] = {}
    sections: dict[Any, str] = {}
    for el in body.iter(etree.Element):
        tag = tag_of(el)
        if tag in HEADING_TAGS:
            text = _usable_text(element_text(el))
            if text:
                current[_section_container(el, body)] = text
        elif tag in _FIELD_TAGS:
            section = current.get(_section_container(el, body))
            if section:
                sections[el] = section
    return sections


def _is_required(el: Any) -> bool:
    return el.get("required") is not None or (el.get("aria-required") or "").lower() == "true"


def _select_options(el: Any) -> tuple[FieldOption, ...]:
    out: list[FieldOption] = []
    for opt in el.iter("option"):
        text = element_text(opt)
        value = opt.get("value")
        out.append(FieldOption(value=text if value is None else value, label=text, checked=opt.get("selected") is not None))
    return tuple(out)

