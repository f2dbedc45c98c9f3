# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for bizreg hosts.

Library modules log through ``logging.getLogger("bizreg.*")``; hosts call
``configure()`` once at startup to route those records through structlog.
Leaf module with no bizreg imports.
"""

from __future__ import annotations

import logging
import sys

import structlog

_BIZREG_LOGGER = "bizreg"


def configure(*, json_output: bool = False, level: str = "INFO", bizreg_level: str | None = None) -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines (log shipping), False for ConsoleRenderer.
        level: Root logger level (default INFO).
        bizreg_level: Optional separate level for the ``bizreg`` logger tree,
            e.g. ``"DEBUG"`` to see per-element scan diagnostics only.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))

    pkg = logging.getLogger(_BIZREG_LOGGER)
    pkg.setLevel(_level(bizreg_level) if bizreg_level else logging.NOTSET)


def bind_page_context(url: str, attempt: int) -> None:
    """Attach the page URL and attempt number to every log line of the current pass."""
    structlog.contextvars.bind_contextvars(page_url=url, attempt=attempt)


def clear_page_context() -> None:
    structlog.contextvars.unbind_contextvars("page_url", "attempt")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)
