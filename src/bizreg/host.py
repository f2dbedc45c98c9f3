# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Host adapters: where snapshots and page signals come from.

``SnapshotSource`` supplies page snapshots and fingerprints to the
lifecycle; ``HostEvents`` lets it subscribe to mutation, navigation and load
signals.  ``PlaywrightHost`` implements both on a live Playwright page;
``StaticPageSource`` serves fixed HTML (tests, offline analysis).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from playwright.async_api import Page

from .config import DetectorConfig
from .dom import PageSnapshot, capture_snapshot
from .fingerprint import ContentFingerprint, capture_fingerprint, fingerprint_snapshot

logger = logging.getLogger("bizreg.host")

MUTATION_BINDING = "__bizregMutation"

# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SnapshotSource(Protocol):
    @property
    def url(self) -> str: ...

    async def snapshot(self) -> PageSnapshot: ...

    async def fingerprint(self) -> ContentFingerprint | None: ...


@runtime_checkable
class HostEvents(Protocol):
    def on_mutation(self, callback: Callable[[], None]) -> None: ...

    def on_navigation(self, callback: Callable[[str], None]) -> None: ...

    def on_load(self, callback: Callable[[], None]) -> None: ...


# ---------------------------------------------------------------------------
# Static HTML
# ---------------------------------------------------------------------------


class StaticPageSource:
    """Serve a fixed HTML document. ``update()`` swaps it for the next snapshot."""

    def __init__(self, html: str, url: str) -> None:
        self._html = html
        self._url = url

    @property
    def url(self) -> str:
        return self._url

    def update(self, html: str, url: str | None = None) -> None:
        self._html = html
        if url is not None:
            self._url = url

    async def snapshot(self) -> PageSnapshot:
        return PageSnapshot.from_html(self._html, self._url)

    async def fingerprint(self) -> ContentFingerprint | None:
        return fingerprint_snapshot(PageSnapshot.from_html(self._html, self._url))


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

_OBSERVER_JS = """(() => {
  if (window.__bizregObserver) return false;
  const RELEVANT = 'form,input,select,textarea,fieldset';
  const touchesForm = (nodes) => Array.from(nodes).some(n =>
    n.nodeType === 1 && (n.matches(RELEVANT) || n.querySelector(RELEVANT) !== null));
  const observer = new MutationObserver((mutations) => {
    if (typeof window.__bizregMutation !== 'function') return;
    if (mutations.some(m => touchesForm(m.addedNodes) || touchesForm(m.removedNodes))) {
      window.__bizregMutation();
    }
  });
  observer.observe(document.documentElement || document, {childList: true, subtree: true});
  window.__bizregObserver = observer;
  setTimeout(() => observer.disconnect(), __LIFETIME_MS__);
  return true;
})()"""


class PlaywrightHost:
    """Snapshot source and event hub for one Playwright page.

    Call ``install()`` once before binding a lifecycle: it exposes the
    mutation binding, injects the observer into the current document and
    every future one, and wires the page's navigation and load events.
    """

    def __init__(self, page: Page, config: DetectorConfig | None = None) -> None:
        self._page = page
        self._config = config or DetectorConfig()
        self._mutation_callbacks: list[Callable[[], None]] = []
        self._navigation_callbacks: list[Callable[[str], None]] = []
        self._load_callbacks: list[Callable[[], None]] = []
        self._installed = False

    @property
    def url(self) -> str:
        return self._page.url

    async def snapshot(self) -> PageSnapshot:
        return await capture_snapshot(self._page)

    async def fingerprint(self) -> ContentFingerprint | None:
        return await capture_fingerprint(self._page)

    def on_mutation(self, callback: Callable[[], None]) -> None:
        self._mutation_callbacks.append(callback)

    def on_navigation(self, callback: Callable[[str], None]) -> None:
        self._navigation_callbacks.append(callback)

    def on_load(self, callback: Callable[[], None]) -> None:
        self._load_callbacks.append(callback)

    async def install(self) -> None:
        if self._installed:
            return
        script = _OBSERVER_JS.replace("__LIFETIME_MS__", str(int(self._config.observer_lifetime * 1000)))
        await self._page.expose_binding(MUTATION_BINDING, self._on_binding)
        await self._page.add_init_script(script)
        try:
            await self._page.evaluate(script)
        except Exception:
            # The init script covers the next document; a detached frame only loses this one
            logger.debug("Observer injection into current document failed", exc_info=True)
        self._page.on("framenavigated", self._on_frame_navigated)
        self._page.on("load", self._on_load)
        self._installed = True

    # -- page event handlers ---------------------------------------------

    def _on_binding(self, source: Any, *args: Any) -> None:
        for callback in list(self._mutation_callbacks):
            callback()

    def _on_frame_navigated(self, frame: Any) -> None:
        if frame.parent_frame is not None:
            return  # iframes do not change the page under detection
        for callback in list(self._navigation_callbacks):
            callback(frame.url)

    def _on_load(self, _page: Page) -> None:
        for callback in list(self._load_callbacks):
            callback()
