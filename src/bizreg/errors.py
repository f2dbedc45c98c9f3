# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""bizreg exception hierarchy.

All bizreg-specific errors inherit from BizRegError.  Every per-element,
per-pattern, per-store and per-delivery failure is isolated by the component
that raises it; only an exhausted detection lifecycle is terminal, and that
surfaces as a fallback ``DetectionResult`` rather than an exception.
"""

from __future__ import annotations


class BizRegError(Exception):
    """Base exception for all bizreg errors."""


class ScanError(BizRegError):
    """A DOM query for one element failed. The element is skipped."""

    def __init__(self, message: str, *, dom_index: int = -1) -> None:
        super().__init__(message)
        self.dom_index = dom_index


class ClassificationError(BizRegError):
    """A taxonomy pattern could not be evaluated. The field becomes ``other``."""

    def __init__(self, message: str, *, category: str = "") -> None:
        super().__init__(message)
        self.category = category


class DetectionTimeoutError(BizRegError, TimeoutError):
    """Soft scan deadline exceeded. Carries the partial stage report."""

    def __init__(self, message: str, *, report: dict | None = None) -> None:
        super().__init__(message)
        self.report = report or {}


class SnapshotError(BizRegError):
    """The host could not capture the page (counts as a failed attempt)."""


class PersistenceError(BizRegError):
    """Adaptive history read/write failed."""


class TransportError(BizRegError):
    """Delivering a result to the messaging collaborator failed."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class TransportClosedError(TransportError):
    """The receiving context is gone; retrying cannot succeed."""
