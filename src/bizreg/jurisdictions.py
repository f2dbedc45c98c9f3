# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Static jurisdiction data: URL fragments, state names, site markers."""

from __future__ import annotations

from dataclasses import dataclass

# First matching fragment wins; order follows the table.
STATE_URL_PATTERNS: dict[str, tuple[str, ...]] = {
    "CA": ("ca.gov", "california", "sos.ca.gov"),
    "NY": ("ny.gov", "newyork", "new-york"),
    "TX": ("tx.gov", "texas", "sos.state.tx.us"),
    "FL": ("fl.gov", "florida", "sunbiz.org"),
    "DE": ("de.gov", "delaware", "corp.delaware.gov"),
    "IL": ("il.gov", "illinois", "ilsos.gov"),
    "PA": ("pa.gov", "pennsylvania"),
    "OH": ("oh.gov", "ohio"),
    "GA": ("ga.gov", "georgia"),
    "NC": ("nc.gov", "north-carolina", "northcarolina"),
    "MI": ("mi.gov", "michigan"),
    "NJ": ("nj.gov", "new-jersey", "newjersey"),
    "VA": ("va.gov", "virginia"),
    "WA": ("wa.gov", "washington"),
    "MA": ("ma.gov", "massachusetts"),
    "AZ": ("az.gov", "arizona"),
    "TN": ("tn.gov", "tennessee"),
    "IN": ("in.gov", "indiana"),
    "MO": ("mo.gov", "missouri"),
    "MD": ("md.gov", "maryland"),
    "WI": ("wi.gov", "wisconsin"),
    "MN": ("mn.gov", "minnesota"),
    "CO": ("co.gov", "colorado"),
    "AL": ("al.gov", "alabama"),
    "SC": ("sc.gov", "south-carolina", "southcarolina"),
    "LA": ("la.gov", "louisiana"),
    "KY": ("ky.gov", "kentucky"),
    "OR": ("or.gov", "oregon"),
    "OK": ("ok.gov", "oklahoma"),
    "CT": ("ct.gov", "connecticut"),
    "UT": ("ut.gov", "utah"),
    "IA": ("ia.gov", "iowa"),
    "NV": ("nv.gov", "nevada"),
    "AR": ("ar.gov", "arkansas"),
    "MS": ("ms.gov", "mississippi"),
    "KS": ("ks.gov", "kansas"),
    "NM": ("nm.gov", "newmexico", "new-mexico"),
    "NE": ("ne.gov", "nebraska"),
    "WV": ("wv.gov", "west-virginia", "westvirginia"),
    "ID": ("id.gov", "idaho"),
    "HI": ("hi.gov", "hawaii"),
    "ME": ("me.gov", "maine"),
    "NH": ("nh.gov", "new-hampshire", "newhampshire"),
    "RI": ("ri.gov", "rhode-island", "rhodeisland"),
    "MT": ("mt.gov", "montana"),
    "SD": ("sd.gov", "south-dakota", "southdakota"),
    "ND": ("nd.gov", "north-dakota", "northdakota"),
    "AK": ("ak.gov", "alaska"),
    "VT": ("vt.gov", "vermont"),
    "WY": ("wy.gov", "wyoming"),
    "DC": ("dc.gov", "district-of-columbia", "districtofcolumbia", "mytax.dc.gov"),
}

# Lowercase name → code, in the order content scanning tries them.
STATE_NAMES: dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY", "district of columbia": "DC",
}  # fmt: skip


@dataclass(frozen=True, slots=True)
class SiteMarkers:
    """Evidence that a page belongs to a jurisdiction's own registration portal.

    ``hosts`` and ``text`` each count one hit per match; ``business_hosts``
    are the portals that also earn the business-site bonus.
    """

    hosts: tuple[str, ...]
    business_hosts: tuple[str, ...]
    text: tuple[str, ...]  # case-sensitive page text markers
    min_hits: int = 2


JURISDICTION_MARKERS: dict[str, SiteMarkers] = {
    "DC": SiteMarkers(
        hosts=("mytax.dc.gov", "mybusiness.dc.gov", "dlcp.dc.gov", "dcra.dc.gov"),
        business_hosts=("mytax.dc.gov", "mybusiness.dc.gov", "dlcp.dc.gov"),
        text=("District of Columbia", "DCRA", "Clean Hands", "DC Government", "FR-500"),
    ),
}


def state_name(code: str) -> str | None:
    for name, c in STATE_NAMES.items():
        if c == code:
            return name
    return None
