# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import bizreg  # noqa: F401
except ImportError:
    raise ImportError("bizreg is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from bizreg.dom import PageSnapshot
from tests._helpers import (
    BLOG_HTML,
    BLOG_URL,
    DC_FR500_HTML,
    DC_FR500_URL,
    ENTITY_TYPE_HTML,
    ENTITY_TYPE_URL,
    FakeClock,
    snapshot_of,
)


@pytest.fixture
def dc_snapshot() -> PageSnapshot:
    return snapshot_of(DC_FR500_HTML, DC_FR500_URL)


@pytest.fixture
def blog_snapshot() -> PageSnapshot:
    return snapshot_of(BLOG_HTML, BLOG_URL)


@pytest.fixture
def entity_type_snapshot() -> PageSnapshot:
    return snapshot_of(ENTITY_TYPE_HTML, ENTITY_TYPE_URL)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
