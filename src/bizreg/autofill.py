# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Autofill mapping: which profile value goes into which detected field.

Produces instructions only; writing values into the page is the host's job.
Select, radio and checkbox-group values are resolved against the field's
options so the instruction always carries a value the control accepts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import BaseModel, Field

from . import DetectionResult, FieldOption, FieldType
from .dom import collapse_ws
from .jurisdictions import STATE_NAMES, state_name

logger = logging.getLogger("bizreg.autofill")

_OPTION_TYPES = frozenset({FieldType.SELECT, FieldType.RADIO_GROUP, FieldType.CHECKBOX_GROUP})
_UNFILLABLE_TYPES = frozenset({FieldType.FILE, FieldType.CHECKBOX})

# Categories whose profile attribute has a different name
_PROFILE_ATTRIBUTES = {"date": "effective_date"}


class BusinessProfile(BaseModel):
    """Business data a user keeps for filling registration forms."""

    business_name: str | None = Field(None, description="Legal name of the business entity")
    dba: str | None = Field(None, description="Trade name / doing-business-as name")
    entity_type: str | None = Field(None, description="LLC, Corporation, Partnership, ...")
    ein: str | None = Field(None, description="Federal employer identification number (XX-XXXXXXX)")
    tax_id: str | None = Field(None, description="State tax account number")
    naics_code: str | None = Field(None, description="Six-digit NAICS industry code")
    business_activity: str | None = Field(None, description="Nature of business / business purpose")
    business_address: str | None = Field(None, description="Physical business address")
    principal_office: str | None = Field(None, description="Principal office address")
    mailing_address: str | None = Field(None, description="Mailing address")
    street_address: str | None = Field(None, description="Street line of the address")
    address_line2: str | None = Field(None, description="Suite / unit / apartment")
    city: str | None = None
    state: str | None = Field(None, description="Two-letter state code")
    zip: str | None = Field(None, description="ZIP or ZIP+4")
    county: str | None = None
    country: str | None = Field("United States", description="Country name")
    email: str | None = None
    phone: str | None = None
    fax: str | None = None
    website: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    full_name: str | None = Field(None, description="Contact or organizer full name")
    registered_agent: str | None = Field(None, description="Registered agent name")
    officer_title: str | None = None
    ownership_percentage: str | None = None
    employee_count: str | None = None
    date_of_birth: str | None = Field(None, description="ISO date (YYYY-MM-DD)")
    effective_date: str | None = Field(None, description="Requested effective / start date")
    signature: str | None = Field(None, description="Typed electronic signature")


@dataclass(frozen=True, slots=True)
class FillInstruction:
    ref: str
    category: str
    value: str
    confidence: int


def profile_value(profile: BusinessProfile, category: str) -> str | None:
    value = getattr(profile, _PROFILE_ATTRIBUTES.get(category, category), None)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _norm(text: str) -> str:
    return collapse_ws(text).casefold()


def resolve_option(options: tuple[FieldOption, ...], value: str, *, category: str = "") -> str | None:
    """Return the option value matching *value* (by value or label), or None."""
    wanted = [_norm(value)]
    if category == "state":
        # "DC" ↔ "District of Columbia"
        if name := state_name(value.strip().upper()):
            wanted.append(name)
        if code := STATE_NAMES.get(_norm(value)):
            wanted.append(code.casefold())

    for w in wanted:
        for opt in options:
            if w in (_norm(opt.value), _norm(opt.label)):
                return opt.value
    for w in wanted:
        for opt in options:
            label = _norm(opt.label)
            if label and (label.startswith(w) or w.startswith(label)):
                return opt.value
    return None


def build_fill_plan(
    result: DetectionResult,
    profile: BusinessProfile,
    *,
    min_confidence: int = 70,
) -> list[FillInstruction]:
    """Instructions, in field order, for every confidently classified field the profile can fill."""
    plan: list[FillInstruction] = []
    for cf in result.fields:
        f, cls = cf.field, cf.classification
        if not cls.is_classified or cls.confidence < min_confidence or f.type in _UNFILLABLE_TYPES:
            continue
        value = profile_value(profile, cls.category)
        if value is None:
            continue
        if f.type in _OPTION_TYPES:
            resolved = resolve_option(f.options, value, category=cls.category)
            if resolved is None:
                logger.debug("No option of %r matches %r", f.label.text, value)
                continue
            value = resolved
        plan.append(FillInstruction(ref=f.ref, category=cls.category, value=value, confidence=cls.confidence))
    return plan
