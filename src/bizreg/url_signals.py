# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""URL signal analysis: government-domain and registration-term scoring.

Pure functions of the URL string.  Three independently capped layers:
  1. Domain      – government hostname patterns       (≤30)
  2. Terms       – registration / tax / licensing terms (≤50)
  3. Query       – business terms in query parameters   (≤20)
plus a +10 bonus when a state is identified on a government domain.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlsplit

from .jurisdictions import STATE_URL_PATTERNS

logger = logging.getLogger("bizreg.url_signals")

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TermGroup:
    """Terms matched as regexes against the lowercase URL, each worth *points*."""

    name: str
    terms: tuple[str, ...]
    points: int
    strong: frozenset[str] = frozenset()
    strong_bonus: int = 0


@dataclass(frozen=True, slots=True)
class UrlAnalysis:
    """Result of URL analysis."""

    url: str
    score: int  # 0-100
    reasons: tuple[str, ...]
    domain: str = ""
    is_government: bool = False
    business_terms: tuple[str, ...] = ()  # every matched term, all groups
    state: str | None = None

    @property
    def is_likely_registration_site(self) -> bool:
        return self.score >= LIKELY_REGISTRATION_THRESHOLD


# ---------------------------------------------------------------------------
# Static signal data
# ---------------------------------------------------------------------------

LIKELY_REGISTRATION_THRESHOLD = 60

_GOVERNMENT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p) for p in (r"\.gov", r"\.us", r"state\.", r"sos\.", r"secretary.*state")
)
_GOV_SCORE = 30
_STATE_US_SCORE = 25
_LOCAL_GOV_SCORE = 20
_LOCAL_GOV_TERMS = ("county", "city", "municipal")

URL_TERM_GROUPS: tuple[TermGroup, ...] = (
    TermGroup(
        "business_registration",
        ("business", "entity", "corporation", "llc", "register", "formation", "incorporate"),
        points=10,
        strong=frozenset({"register", "business", "llc", "corporation", "incorporate"}),
        strong_bonus=5,
    ),
    TermGroup("tax", ("tax", "revenue", "irs", "ein"), points=8),
    TermGroup("licensing", ("license", "permit", "certification"), points=5),
)
_TERMS_CAP = 50
_MULTI_MATCH_BONUS = ((3, 15), (2, 8))  # (min matches, bonus), first hit wins

_QUERY_TERMS = ("register", "entity", "business", "formation", "filing", "llc", "corporation", "corp", "type", "form")
_QUERY_TERM_POINTS = 5
_QUERY_ENTITY_KEYS = frozenset({"type", "entityType"})
_QUERY_ENTITY_BONUS = 10
_QUERY_CAP = 20

_STATE_GOV_BONUS = 10

# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def extract_url_pattern(url: str) -> str:
    """Hostname + first path segment: ``https://mytax.dc.gov/form/FR-500`` → ``mytax.dc.gov/form``."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        host = None
    if not host:
        return "/".join(url.split("/")[:3])
    segments = parts.path.split("/")
    return host + "/".join(segments[:2])


def url_root(url: str) -> str:
    """Origin (``scheme://host[:port]``); empty when the URL has no host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc.lower()}"


def identify_state_from_url(url: str) -> str | None:
    lowered = url.lower()
    for code, fragments in STATE_URL_PATTERNS.items():
        if any(fragment in lowered for fragment in fragments):
            return code
    return None


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


def _government_score(domain: str) -> int:
    score = 0
    if any(p.search(domain) for p in _GOVERNMENT_PATTERNS):
        score = _GOV_SCORE
    if "state" in domain and ".us" in domain:
        score = max(score, _STATE_US_SCORE)
    elif any(term in domain for term in _LOCAL_GOV_TERMS):
        score = max(score, _LOCAL_GOV_SCORE)
    return score


def _term_score(full_url: str) -> tuple[int, list[str]]:
    score = 0
    matches: list[str] = []
    for group in URL_TERM_GROUPS:
        for term in group.terms:
            if re.search(term, full_url):
                score += group.points
                if term in group.strong:
                    score += group.strong_bonus
                matches.append(term)
    for min_matches, bonus in _MULTI_MATCH_BONUS:
        if len(matches) >= min_matches:
            score += bonus
            break
    return min(score, _TERMS_CAP), list(dict.fromkeys(matches))


def _query_score(query: str) -> int:
    if not query:
        return 0
    score = 0
    for key, value in parse_qsl(query, keep_blank_values=True):
        key_l, value_l = key.lower(), value.lower()
        score += _QUERY_TERM_POINTS * sum(term in key_l for term in _QUERY_TERMS)
        score += _QUERY_TERM_POINTS * sum(term in value_l for term in _QUERY_TERMS)
        if key in _QUERY_ENTITY_KEYS and ("LLC" in value or "Corp" in value):
            score += _QUERY_ENTITY_BONUS
    return min(score, _QUERY_CAP)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def analyze_url(url: str) -> UrlAnalysis:
    """Score *url* for government / business-registration signals. Never raises."""
    if not url:
        return UrlAnalysis(url=url, score=0, reasons=("Empty URL",))
    try:
        parts = urlsplit(url)
        domain = (parts.hostname or "").lower()
    except ValueError as e:
        logger.debug("Unparseable URL %r: %s", url, e)
        return UrlAnalysis(url=url, score=0, reasons=(f"Error analyzing URL: {e}",))

    reasons: list[str] = []
    state = identify_state_from_url(url)
    score = 0

    gov = _government_score(domain)
    if gov:
        score += gov
        reasons.append(f"Government domain detected ({gov} points)")

    terms_score, terms = _term_score(url.lower())
    if terms_score:
        score += terms_score
        reasons.append(f"Business registration patterns ({terms_score} points)")

    query = _query_score(parts.query)
    if query:
        score += query
        reasons.append(f"Business-related query parameters ({query} points)")

    if state and gov:
        score += _STATE_GOV_BONUS
        reasons.append(f"State-specific government site ({_STATE_GOV_BONUS} points)")

    return UrlAnalysis(
        url=url,
        score=min(score, 100),
        reasons=tuple(reasons),
        domain=domain,
        is_government=gov > 0,
        business_terms=tuple(terms),
        state=state,
    )


class UrlSignalAnalyzer:
    """Capability wrapper around ``analyze_url`` for pipeline injection."""

    def analyze(self, url: str) -> UrlAnalysis:
        return analyze_url(url)
