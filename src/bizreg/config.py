# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detector configuration.

Every timing and limit the engine uses lives on one frozen dataclass so a
host can build it once and share it between the pipeline, the scanner and
the lifecycle.  ``from_env()`` applies ``BIZREG_*`` overrides on top of the
defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

_ENV_PREFIX = "BIZREG_"
_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True, slots=True)
class DetectorConfig:
    """Immutable detector configuration."""

    # Detection lifecycle
    max_attempts: int = 5
    retry_base_delay: float = 2.0  # seconds before the 2nd attempt
    retry_backoff: float = 1.5
    page_load_followup: float = 2.5  # delayed page-load trigger
    mutation_debounce: float = 0.8
    navigation_delay: float = 0.5
    hash_navigation_delay: float = 1.5
    observer_lifetime: float = 30.0  # mutation notifications honoured for this long after start
    significant_input_delta: int = 5

    # Field scanning
    scan_budget: float = 3.0  # soft wall-clock deadline per scan
    max_elements: int = 1000
    viewport_tolerance: int = 100
    viewport_only: bool = True

    # Capabilities
    field_detection: bool = True
    adaptive_enabled: bool = True
    taxonomy_overrides: str | None = None  # YAML file with extra jurisdiction overrides

    # Adaptive history
    history_limit: int = 100
    history_key: str = "bizreg.prior_detections"

    # Result delivery
    transport_max_retries: int = 3
    transport_retry_delay: float = 1.0
    transport_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        if self.scan_budget <= 0:
            raise ValueError("scan_budget must be > 0")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> DetectorConfig:
        """Build a config from ``BIZREG_<FIELD>`` variables (e.g. ``BIZREG_MAX_ATTEMPTS=3``).

        Raises:
            ValueError: If a variable cannot be parsed as the field's type.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            overrides[f.name] = _coerce(f.name, f.type, raw.strip())
        return cls(**overrides)


def _coerce(name: str, type_name: object, raw: str) -> object:
    # Annotations are strings under ``from __future__ import annotations``.
    kind = str(type_name)
    if kind == "bool":
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{_ENV_PREFIX}{name.upper()}: expected a boolean, got {raw!r}")
    try:
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except ValueError as e:
        raise ValueError(f"{_ENV_PREFIX}{name.upper()}: {e}") from e
    return raw
