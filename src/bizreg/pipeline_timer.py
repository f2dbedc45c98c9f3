# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detection-pass stage timer with a soft wall-clock budget.

The scanner polls ``expired()`` between elements instead of yielding, so a
pass over a huge DOM stops early with partial results.  ``timeout_report()``
describes where the budget ran out.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0


class PipelineTimer:
    """Track pass stage transitions and a soft deadline."""

    __slots__ = ("_stages", "_current", "_start_ns", "_budget_ns", "_clock")

    def __init__(self, budget_s: float | None = None, *, clock: Callable[[], int] = time.monotonic_ns) -> None:
        self._clock = clock
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = clock()
        self._budget_ns: int | None = int(budget_s * 1e9) if budget_s is not None else None

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = self._clock()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = self._clock()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_ms(self) -> float:
        return round((self._clock() - self._start_ns) / 1e6, 1)

    def expired(self) -> bool:
        if self._budget_ns is None:
            return False
        return self._clock() - self._start_ns >= self._budget_ns

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms} for all stages (including current)."""
        now = self._clock()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round((s.end_ns - s.start_ns) / 1e6, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic for a truncated pass."""
        now = self._clock()
        completed = [{"stage": s.name, "ms": round((s.end_ns - s.start_ns) / 1e6, 1)} for s in self._stages]
        current = self.current_stage or "unknown"
        current_ms = round((now - self._current.start_ns) / 1e6, 1) if self._current else 0
        return {
            "error": "timeout",
            "completed_stages": completed,
            "timed_out_at": current,
            "timed_out_stage_ms": current_ms,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        hints = {
            "scan": "Page has a very large number of form controls. Results are partial.",
            "classify": "Many fields to classify. Consider narrowing the scanned subtree.",
            "adaptive": "Adaptive history store is slow to respond.",
        }
        return hints.get(stage, f"Timed out during '{stage}' stage.")
