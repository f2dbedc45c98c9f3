# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page content analysis: registration terminology in text, headings, title, meta.

All bonuses are additive and documented next to the data they apply to.
The only non-trivial rule is the proximity bonus: a registration term
immediately followed by an entity-type term ("register an llc",
"articles of incorporation corporation" …) earns +15 once per term.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache

from . import FormType
from .dom import PageSnapshot
from .jurisdictions import JURISDICTION_MARKERS, STATE_NAMES

logger = logging.getLogger("bizreg.content_signals")

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentAnalysis:
    score: int  # 0-100
    reasons: tuple[str, ...] = ()
    state: str | None = None
    business_term_count: int = 0
    # {jurisdiction code: number of page-text markers present}
    marker_hits: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Term lists
# ---------------------------------------------------------------------------

ENTITY_TERMS: dict[str, tuple[str, ...]] = {
    "llc": (
        "llc", "limited liability company", "limited liability corporation",
        "l.l.c.", "professional llc", "pllc", "series llc",
        "member-managed llc", "manager-managed llc",
    ),
    "corporations": (
        "corporation", "incorporated", "inc", "inc.", "corp", "corp.",
        "c-corporation", "c corp", "c-corp", "s-corporation", "s corp", "s-corp",
        "close corporation", "professional corporation", "pc", "p.c.",
        "benefit corporation", "b-corp", "public benefit corporation", "pbc",
        "statutory close corporation",
    ),
    "partnerships": (
        "partnership", "general partnership", "limited partnership", "lp", "l.p.",
        "limited liability partnership", "llp", "l.l.p.",
        "limited liability limited partnership", "lllp", "l.l.l.p.",
        "family limited partnership", "flp",
    ),
    "nonprofits": (
        "nonprofit", "non-profit", "not for profit", "not-for-profit", "501c3",
        "nonprofit corporation", "charitable organization", "foundation",
        "public charity", "private foundation",
    ),
    "other": (
        "sole proprietorship", "sole proprietor", "doing business as", "dba", "d/b/a",
        "fictitious name", "trade name", "assumed name",
        "cooperative", "co-op", "professional association", "pa",
        "joint venture", "business trust", "statutory trust",
    ),
}  # fmt: skip

REGISTRATION_TERMS: tuple[str, ...] = (
    # registration
    "business registration", "register a business", "register your business",
    "business license", "business permit", "business filing",
    "new business", "start a business", "starting a business",
    "fr-500", "fr500", "combined business tax registration",
    "business tax registration", "register business", "business entity",
    # formation documents
    "articles of organization", "articles of incorporation", "articles of formation",
    "certificate of formation", "certificate of organization", "certificate of incorporation",
    "operating agreement", "bylaws", "corporate bylaws",
    "formation document", "company formation", "entity formation",
    "business formation", "incorporate", "incorporation",
    # administrative filings
    "annual report", "biennial report", "statement of information",
    "foreign qualification", "certificate of authority", "certificate of good standing",
    "statement of foreign qualification", "foreign entity registration",
    "registered agent", "statutory agent", "agent for service of process",
    # identifiers
    "ein", "employer identification number", "federal tax id", "tax id number",
    "business tax id", "fein", "federal employer identification number",
    "sales tax permit", "sales tax certificate", "reseller permit",
    "withholding tax registration",
    # process
    "file a", "submit a", "apply for", "application for",
    "form a", "create a", "establish a", "organize a",
    "registration form", "filing fee", "filing period", "filing requirements",
    "submit online", "file online", "electronic filing", "e-file",
    # special events / vendors
    "special event registration", "event permit", "vendor registration",
    "temporary business", "special event license", "vendor permit",
    "festival vendor", "market vendor", "fair vendor", "event vendor",
    "temporary permit", "one-time permit", "short-term permit",
    "booth registration", "vendor application", "exhibitor registration",
    "special event application", "temporary vendor", "mobile vendor",
)  # fmt: skip

GOVERNMENT_TERMS: tuple[str, ...] = (
    "secretary of state", "department of state", "division of corporations",
    "business registrations division", "corporations division",
    "department of revenue", "revenue department", "tax department",
    "state filing", "official business registry", "business entities database",
    "business records service",
)  # fmt: skip

# (pattern, points); the first match per heading counts
HEADING_PATTERNS: tuple[tuple[re.Pattern[str], int], ...] = tuple(
    (re.compile(p), pts)
    for p, pts in (
        (r"register.{0,10}(business|entity|llc|corporation|company)", 15),
        (r"form.{0,5}(an?|your).{0,5}(llc|corporation|business|company)", 15),
        (r"start.{0,5}(an?|your).{0,5}(business|company|llc|corporation)", 15),
        (r"creat.{0,5}(an?|your).{0,5}(business|company|llc|corporation)", 15),
        (r"(business|entity).{0,10}registration", 15),
        (r"(online|electronic).{0,5}filing", 10),
        (r"articles of (organization|incorporation)", 15),
        (r"certificate of (formation|organization)", 15),
        (r"business.{0,5}licens", 10),
        (r"file.{0,10}licens", 10),
        (r"tax.{0,10}registration", 10),
        (r"employer.{0,10}identification", 10),
        (r"business.{0,10}tax", 10),
        (r"fr.?500", 20),
        (r"combined.{0,10}business.{0,10}tax", 15),
    )
)

# (pattern, points); every match counts
TITLE_PATTERNS: tuple[tuple[re.Pattern[str], int], ...] = tuple(
    (re.compile(p), pts)
    for p, pts in (
        (r"(register|form|create|start).{0,10}(business|llc|corporation)", 20),
        (r"(business|entity|llc).{0,10}registration", 20),
        (r"(file|submit).{0,10}(application|registration)", 15),
        (r"(articles|certificate).{0,10}(organization|incorporation|formation)", 15),
    )
)

_META_RE = re.compile(r"business|registration|entity|incorporation|llc|corporation")
_BUSINESS_TERM_RE = re.compile(r"business|entity|corporation|llc|formation|registration|ein|tax.*id", re.IGNORECASE)

_ENTITY_WORD_POINTS = 5
_ENTITY_TITLE_BONUS = 2
_ENTITY_HEADING_BONUS = 3
_ENTITY_PARTIAL_POINTS = 2
_REGISTRATION_POINTS = 7
_PROXIMITY_BONUS = 15
_GOVERNMENT_POINTS = 10
_META_POINTS = 10

_STATE_BUSINESS_PHRASES = ("business registration", "register a business", "secretary of state", "department of state")


@lru_cache(maxsize=256)
def _word_re(term: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(term)}\b")


def _all_entity_terms() -> list[str]:
    return [t for terms in ENTITY_TERMS.values() for t in terms]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _entity_score(text: str, title: str, headings: list[str], reasons: list[str]) -> int:
    score = 0
    hits = 0
    for term in _all_entity_terms():
        rx = _word_re(term)
        if rx.search(text):
            score += _ENTITY_WORD_POINTS
            hits += 1
            if rx.search(title):
                score += _ENTITY_TITLE_BONUS
            if any(rx.search(h) for h in headings):
                score += _ENTITY_HEADING_BONUS
        elif term in text:
            score += _ENTITY_PARTIAL_POINTS
    if hits:
        reasons.append(f"{hits} entity-type terms")
    return score


def _has_proximity(text: str, term: str) -> bool:
    for entity_terms in ENTITY_TERMS.values():
        for entity in entity_terms:
            if f"{term} {entity}" in text or f"{term} a {entity}" in text or f"{term} an {entity}" in text:
                return True
    return False


def _registration_score(text: str, reasons: list[str]) -> int:
    score = 0
    for term in REGISTRATION_TERMS:
        if term not in text:
            continue
        score += _REGISTRATION_POINTS
        if _has_proximity(text, term):
            score += _PROXIMITY_BONUS
            reasons.append(f"registration term near entity type: {term!r}")
    return score


def analyze_content(snapshot: PageSnapshot) -> ContentAnalysis:
    """Score the page's visible text for registration terminology."""
    text = snapshot.page_text_lower
    if not text and not snapshot.title:
        return ContentAnalysis(score=0, reasons=("no page text",))

    title = snapshot.title.lower()
    headings = [h for _, h in snapshot.headings]
    top_headings = [h for tag, h in snapshot.headings if tag in ("h1", "h2", "h3")]
    reasons: list[str] = []

    score = _entity_score(text, title, top_headings, reasons)
    score += _registration_score(text, reasons)

    for term in GOVERNMENT_TERMS:
        if term in text:
            score += _GOVERNMENT_POINTS
            reasons.append(f"government term: {term!r}")

    for heading in headings:
        for pattern, points in HEADING_PATTERNS:
            if pattern.search(heading):
                score += points
                reasons.append(f"heading matched {pattern.pattern!r} (+{points})")
                break

    for pattern, points in TITLE_PATTERNS:
        if pattern.search(title):
            score += points
            reasons.append(f"title matched {pattern.pattern!r} (+{points})")

    if snapshot.meta_description and _META_RE.search(snapshot.meta_description):
        score += _META_POINTS
        reasons.append("meta description mentions registration")

    raw_text = snapshot.page_text
    marker_hits = {
        code: sum(marker in raw_text for marker in markers.text) for code, markers in JURISDICTION_MARKERS.items()
    }

    return ContentAnalysis(
        score=min(score, 100),
        reasons=tuple(reasons),
        state=identify_state_from_content(snapshot),
        business_term_count=len(_BUSINESS_TERM_RE.findall(raw_text)),
        marker_hits=marker_hits,
    )


def identify_state_from_content(snapshot: PageSnapshot) -> str | None:
    """Jurisdiction named in headings, registration phrases, or "state of <name>"."""
    text = snapshot.page_text_lower
    if not text:
        return None

    for _, heading in snapshot.headings:
        padded = f" {heading} "
        for name, code in STATE_NAMES.items():
            if name in heading or f" {code.lower()} " in padded:
                return code

    for name, code in STATE_NAMES.items():
        for phrase in _STATE_BUSINESS_PHRASES:
            if f"{name} {phrase}" in text or f"{phrase} {name}" in text:
                return code
        if f"state of {name}" in text:
            return code
    return None


# ---------------------------------------------------------------------------
# Form type
# ---------------------------------------------------------------------------

_FORMATION_TERMS = ("formation", "organize", "start", "create", "new", "articles of")
_COMPLIANCE_TERMS = ("annual", "biennial", "report", "renewal", "compliance", "update")
_TAX_TERMS = ("tax", "ein", "employer id", "sales tax", "revenue")
_FOREIGN_TERMS = ("foreign", "qualification", "out-of-state", "another state")

_TAX_TYPES = (
    ("sales tax", "sales_tax"),
    ("income tax", "income_tax"),
    ("withholding", "withholding_tax"),
    ("ein", "ein_application"),
    ("employer identification", "ein_application"),
)
_COMPLIANCE_TYPES = (
    ("annual report", "annual_report"),
    ("statement of information", "statement_of_information"),
)
_ENTITY_TYPES = (
    ("llc", "llc"),
    ("limited liability company", "llc"),
    ("corporation", "corporation"),
    ("incorporated", "corporation"),
    ("partnership", "partnership"),
    ("limited partnership", "limited_partnership"),
    ("nonprofit", "nonprofit"),
    ("sole proprietor", "sole_proprietorship"),
)


def _first(pairs: tuple[tuple[str, str], ...], text: str) -> str | None:
    return next((value for term, value in pairs if term in text), None)


def infer_form_type(url: str, page_text_lower: str) -> tuple[FormType, dict[str, str]]:
    """Most specific form type plus its detail (taxType / complianceType / entityType)."""
    url_l = url.lower()

    def present(terms: tuple[str, ...]) -> bool:
        return any(t in page_text_lower or t in url_l for t in terms)

    details: dict[str, str] = {}
    if present(_TAX_TERMS):
        if tax_type := _first(_TAX_TYPES, page_text_lower):
            details["taxType"] = tax_type
        return FormType.TAX_REGISTRATION, details
    if present(_FOREIGN_TERMS):
        return FormType.FOREIGN_QUALIFICATION, details
    if present(_COMPLIANCE_TERMS):
        if compliance := _first(_COMPLIANCE_TYPES, page_text_lower):
            details["complianceType"] = compliance
        return FormType.COMPLIANCE_FILING, details
    if present(_FORMATION_TERMS):
        if entity := _first(_ENTITY_TYPES, page_text_lower):
            details["entityType"] = entity
        return FormType.ENTITY_FORMATION, details
    return FormType.GENERAL, details


class ContentSignalAnalyzer:
    """Capability wrapper around ``analyze_content`` for pipeline injection."""

    def analyze(self, snapshot: PageSnapshot) -> ContentAnalysis:
        return analyze_content(snapshot)
