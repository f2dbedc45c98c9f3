# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Field taxonomy: category → patterns → weights → jurisdiction overrides.

The single source of truth for field classification.  Categories are listed
in tie-break order.  Every pattern is a regex matched with word boundaries
against normalized text (lowercase, separators and camelCase split into
words) and carries its own weight; a category's default weight applies to
patterns given as bare strings.

Jurisdiction overrides add or replace patterns per category before matching.
Built-in overrides live in ``JURISDICTION_OVERRIDES``; hosts can extend them
with a YAML file (see ``load_overrides_file``).  ``load_taxonomy()`` compiles
everything once per overrides path.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml

from .errors import ClassificationError

logger = logging.getLogger("bizreg.taxonomy")

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PatternDef:
    regex: str
    weight: int


@dataclass(frozen=True, slots=True)
class CategoryDef:
    name: str
    patterns: tuple[PatternDef, ...]
    business: bool = False  # counts towards "business categories present"


@dataclass(frozen=True, slots=True)
class Override:
    """Per-jurisdiction change to one category's patterns."""

    category: str
    patterns: tuple[PatternDef, ...]
    mode: Literal["add", "replace"] = "add"


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    source: str
    regex: re.Pattern[str]
    weight: int


@dataclass(frozen=True, slots=True)
class CompiledCategory:
    name: str
    patterns: tuple[CompiledPattern, ...]
    business: bool = False


# ---------------------------------------------------------------------------
# Declarative data
# ---------------------------------------------------------------------------


def _cat(name: str, weight: int, *patterns: str | tuple[str, int], business: bool = False) -> CategoryDef:
    defs = tuple(PatternDef(p, weight) if isinstance(p, str) else PatternDef(p[0], p[1]) for p in patterns)
    return CategoryDef(name=name, patterns=defs, business=business)


CATEGORIES: tuple[CategoryDef, ...] = (
    # Business identity
    _cat(
        "business_name", 95,
        r"business\s*name", r"company\s*name", r"entity\s*name", r"organization\s*name",
        r"legal\s*name", r"corporate\s*name", r"firm\s*name", r"llc\s*name",
        business=True,
    ),
    _cat(
        "dba", 90,
        r"dba", r"d\s*/\s*b\s*/\s*a", r"doing\s*business\s*as", r"trade\s*name",
        r"fictitious\s*name", r"assumed\s*name",
        business=True,
    ),
    _cat(
        "entity_type", 90,
        r"entity\s*type", r"business\s*type", r"organization\s*type", r"corporate\s*structure",
        r"type\s*of\s*(?:entity|business|organization)", r"legal\s*structure", r"business\s*structure",
        business=True,
    ),
    _cat(
        "ein", 95,
        r"ein", r"fein", r"employer\s*identification\s*(?:number|no)?", r"federal\s*tax\s*id\w*",
        r"federal\s*employer\s*id\w*", r"tax\s*identification\s*number", r"federal\s*id",
        business=True,
    ),
    _cat(
        "tax_id", 90,
        r"state\s*tax\s*(?:id|number|account)", r"sales\s*tax\s*(?:id|number|permit|account)",
        r"withholding\s*(?:account|number|id)", r"tax\s*account\s*(?:number|no)?", r"seller'?s?\s*permit",
        (r"tax\s*id", 85),
        business=True,
    ),
    _cat("ssn", 95, r"ssn", r"social\s*security(?:\s*number)?", r"soc\s*sec\s*no"),
    _cat("naics_code", 90, r"naics(?:\s*code)?", r"industry\s*code"),
    _cat(
        "business_activity", 85,
        r"business\s*activity", r"nature\s*of\s*(?:the\s*)?business", r"business\s*purpose",
        (r"purpose", 75),
    ),
    # Addresses
    _cat(
        "business_address", 88,
        r"business\s*address", r"business\s*location", r"principal\s*address", r"physical\s*address",
        business=True,
    ),
    _cat(
        "principal_office", 85,
        r"principal\s*office", r"principal\s*place\s*of\s*business", r"headquarters", r"main\s*office",
    ),
    _cat("mailing_address", 85, r"mailing\s*address", r"mail\s*to"),
    _cat(
        "street_address", 85,
        r"street\s*address", r"address\s*line\s*1", r"address\s*1", r"street",
        (r"address", 70),
    ),
    _cat("address_line2", 85, r"address\s*line\s*2", r"address\s*2", r"apt", r"suite", r"unit"),
    _cat("city", 90, r"city", r"town", r"municipality"),
    _cat("state", 85, r"state\s*(?:or\s*)?province", r"province", (r"state", 80)),
    _cat("zip", 95, r"zip(?:\s*code)?", r"postal\s*code", r"postcode", r"zip\s*\+\s*4"),
    _cat("county", 85, r"county"),
    _cat("country", 85, r"country"),
    # Contact
    _cat("email", 90, r"email(?:\s*address)?", r"e\s*-?\s*mail", r"electronic\s*mail"),
    _cat(
        "phone", 90,
        r"phone(?:\s*number)?", r"telephone", r"tel", r"contact\s*number", r"mobile", r"cell",
    ),
    _cat("fax", 85, r"fax(?:\s*number)?"),
    _cat("website", 85, r"website", r"web\s*site", r"web\s*address", r"homepage", (r"url", 75)),
    # People
    _cat("first_name", 90, r"first\s*name", r"given\s*name", r"fname"),
    _cat("middle_name", 85, r"middle\s*name", r"middle\s*initial", r"mi"),
    _cat("last_name", 90, r"last\s*name", r"surname", r"family\s*name", r"lname"),
    _cat(
        "registered_agent", 95,
        r"registered\s*agent", r"statutory\s*agent", r"resident\s*agent", r"process\s*agent",
        r"agent\s*for\s*service",
    ),
    _cat(
        "full_name", 85,
        r"full\s*name", r"your\s*name", r"contact\s*name", r"owner\s*name", r"member\s*name",
        r"authorized\s*person", r"organizer\s*name", (r"name", 70),
    ),
    _cat("officer_title", 80, r"officer\s*title", r"job\s*title", r"position", r"title"),
    _cat(
        "ownership_percentage", 80,
        r"ownership\s*(?:percentage|percent|%)", r"percent\s*(?:of\s*)?owner\w*", r"%\s*owned",
    ),
    _cat("employee_count", 80, r"(?:number|no)\s*of\s*employees", r"employee\s*count", r"employees"),
    _cat("date_of_birth", 90, r"date\s*of\s*birth", r"dob", r"birth\s*date"),
    _cat(
        "date", 80,
        r"effective\s*date", r"start\s*date", r"formation\s*date", r"incorporation\s*date",
        r"date",
    ),
    _cat("signature", 80, r"signature", r"signed\s*by", r"e\s*-?\s*signature"),
    _cat("certification", 75, r"certif\w*", r"acknowledg\w*", r"i\s*agree", r"attest\w*", r"affirm\w*"),
)  # fmt: skip


def _p(regex: str, weight: int) -> PatternDef:
    return PatternDef(regex, weight)


JURISDICTION_OVERRIDES: dict[str, tuple[Override, ...]] = {
    # FR-500 Combined Business Tax Registration
    "DC": (
        Override("ein", (_p(r"fein", 98), _p(r"federal\s*ein", 98), _p(r"federal\s*employer\s*id\w*", 98))),
        Override("dba", (_p(r"trade\s*name", 95), _p(r"doing\s*business\s*as", 95))),
        Override("business_activity", (_p(r"business\s*activity", 90), _p(r"nature\s*of\s*business", 90))),
        Override("naics_code", (_p(r"naics", 95), _p(r"industry\s*code", 90))),
        Override("tax_id", (_p(r"clean\s*hands", 85), _p(r"otr\s*(?:account|id)", 92))),
    ),
    # LLC-1 Articles of Organization
    "CA": (
        Override("business_name", (_p(r"limited\s*liability\s*company\s*name", 97),)),
        Override("registered_agent", (_p(r"agent\s*for\s*service\s*of\s*process", 97),)),
        Override("tax_id", (_p(r"ca\s*sos\s*file\s*(?:number|no)", 90), _p(r"edd\s*account", 90))),
    ),
    # Certificate of Formation
    "DE": (
        Override("business_name", (_p(r"name\s*of\s*limited\s*liability\s*company", 97),)),
        Override("principal_office", (_p(r"registered\s*office\s*in\s*delaware", 92),)),
    ),
}

# Input-type hints act as weak extra patterns: (input type, category, weight)
TYPE_HINTS: dict[str, tuple[str, int]] = {
    "email": ("email", 80),
    "tel": ("phone", 80),
    "url": ("website", 75),
    "date": ("date", 70),
}

# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def bounded(regex: str) -> re.Pattern[str]:
    """Compile *regex* so it only matches whole words of normalized text."""
    return re.compile(rf"(?<![a-z0-9])(?:{regex})(?![a-z0-9])")


def _compile(patterns: Iterable[PatternDef], category: str) -> tuple[CompiledPattern, ...]:
    out: list[CompiledPattern] = []
    for p in patterns:
        try:
            out.append(CompiledPattern(p.regex, bounded(p.regex), max(0, min(100, p.weight))))
        except re.error as e:
            # A broken override pattern must not take the whole category down
            logger.warning("Skipping invalid pattern %r for %s: %s", p.regex, category, e)
    return tuple(out)


class Taxonomy:
    """Compiled categories with per-jurisdiction override views."""

    def __init__(
        self,
        categories: Iterable[CategoryDef] = CATEGORIES,
        overrides: Mapping[str, Iterable[Override]] | None = None,
    ) -> None:
        self._defs: tuple[CategoryDef, ...] = tuple(categories)
        self._overrides: dict[str, tuple[Override, ...]] = {
            code.upper(): tuple(ovs) for code, ovs in (overrides or JURISDICTION_OVERRIDES).items()
        }
        self._views: dict[str | None, tuple[CompiledCategory, ...]] = {}
        names = [c.name for c in self._defs]
        if len(set(names)) != len(names):
            raise ValueError("duplicate category names in taxonomy")

    @property
    def category_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self._defs)

    @property
    def business_categories(self) -> frozenset[str]:
        return frozenset(c.name for c in self._defs if c.business)

    @property
    def jurisdictions(self) -> tuple[str, ...]:
        return tuple(sorted(self._overrides))

    def for_jurisdiction(self, state: str | None) -> tuple[CompiledCategory, ...]:
        """Categories with *state*'s overrides applied, compiled once and cached."""
        key = state.upper() if state else None
        view = self._views.get(key)
        if view is None:
            view = self._build(key)
            self._views[key] = view
        return view

    def _build(self, state: str | None) -> tuple[CompiledCategory, ...]:
        by_category: dict[str, list[Override]] = {}
        for ov in self._overrides.get(state, ()) if state else ():
            by_category.setdefault(ov.category, []).append(ov)

        compiled: list[CompiledCategory] = []
        for cat in self._defs:
            patterns = list(cat.patterns)
            for ov in by_category.pop(cat.name, []):
                patterns = list(ov.patterns) if ov.mode == "replace" else [*ov.patterns, *patterns]
            compiled.append(CompiledCategory(cat.name, _compile(patterns, cat.name), cat.business))

        # Overrides may introduce jurisdiction-only categories; they rank last.
        for name, ovs in by_category.items():
            patterns = [p for ov in ovs for p in ov.patterns]
            compiled.append(CompiledCategory(name, _compile(patterns, name)))
        return tuple(compiled)


# ---------------------------------------------------------------------------
# YAML overrides
# ---------------------------------------------------------------------------


def parse_overrides(data: Any) -> dict[str, tuple[Override, ...]]:
    """Parse the ``jurisdictions:`` mapping of an overrides document.

    Shape::

        jurisdictions:
          DC:
            ein:
              mode: add            # or replace
              patterns:
                - {pattern: 'fed\\s*ein', weight: 98}

    Raises:
        ClassificationError: If the document does not have that shape.
    """
    if data is None:
        return {}
    if not isinstance(data, dict) or not isinstance(data.get("jurisdictions", {}), dict):
        raise ClassificationError("overrides document must map 'jurisdictions' to a mapping")
    result: dict[str, tuple[Override, ...]] = {}
    for code, categories in (data.get("jurisdictions") or {}).items():
        if not isinstance(categories, dict):
            raise ClassificationError(f"jurisdiction {code!r} must map categories to override specs")
        ovs: list[Override] = []
        for category, spec in categories.items():
            if not isinstance(spec, dict):
                raise ClassificationError(f"override for {code}/{category} must be a mapping", category=category)
            mode = spec.get("mode", "add")
            if mode not in ("add", "replace"):
                raise ClassificationError(f"unknown override mode {mode!r}", category=category)
            patterns: list[PatternDef] = []
            for entry in spec.get("patterns") or []:
                if isinstance(entry, str):
                    patterns.append(PatternDef(entry, 90))
                elif isinstance(entry, dict) and "pattern" in entry:
                    patterns.append(PatternDef(str(entry["pattern"]), int(entry.get("weight", 90))))
                else:
                    raise ClassificationError(f"bad pattern entry {entry!r}", category=category)
            ovs.append(Override(str(category), tuple(patterns), mode))
        result[str(code).upper()] = tuple(ovs)
    return result


def load_overrides_file(path: str | Path) -> dict[str, tuple[Override, ...]]:
    with open(Path(path).expanduser(), encoding="utf-8") as f:
        return parse_overrides(yaml.safe_load(f))


def merge_overrides(
    base: Mapping[str, tuple[Override, ...]],
    extra: Mapping[str, tuple[Override, ...]],
) -> dict[str, tuple[Override, ...]]:
    merged = {code: tuple(ovs) for code, ovs in base.items()}
    for code, ovs in extra.items():
        merged[code] = merged.get(code, ()) + tuple(ovs)
    return merged


@lru_cache(maxsize=8)
def load_taxonomy(overrides_path: str | None = None) -> Taxonomy:
    """Build the taxonomy once per overrides file.

    A missing or malformed overrides file is logged and ignored; the
    built-in overrides still apply.
    """
    overrides: dict[str, tuple[Override, ...]] = dict(JURISDICTION_OVERRIDES)
    if overrides_path:
        try:
            overrides = merge_overrides(overrides, load_overrides_file(overrides_path))
        except (OSError, yaml.YAMLError, ClassificationError, ValueError) as e:
            logger.warning("Ignoring taxonomy overrides %s: %s", overrides_path, e)
    return Taxonomy(CATEGORIES, overrides)
