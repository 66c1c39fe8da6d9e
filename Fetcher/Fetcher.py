"""
Fetcher/Fetcher.py — Two-tier page fetcher (static HTTP first, browser fallback).

The static path downloads the HTML with httpx and parses it directly.  When
that fails, or when the :class:`~Fetcher.Signals.ShellHeuristic` says the
page is an application shell, the same URL is rendered in a Playwright page
and the serialised DOM is parsed instead.  Only when both tiers fail is an
``error``-mode page produced.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

import httpx
from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, Route

from Models import CrawlPage, DetailedForms, FetchError

from .Signals import TEXT_SAMPLE_LENGTH, PageSignals, ShellHeuristic, parse_html

logger = logging.getLogger(__name__)

USER_AGENT = "FlowScout-HybridBot/1.0"

# Resource types not needed to build the DOM
_BLOCKED_RESOURCES: frozenset[str] = frozenset({"image", "font", "media"})


# ---------------------------------------------------------------------------
# Fetch outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StaticFetch:
    """The raw HTML was enough."""

    html: str
    signals: PageSignals


@dataclass(frozen=True)
class DynamicFetch:
    """The page had to be rendered by the browser."""

    signals: PageSignals


@dataclass(frozen=True)
class FailedFetch:
    """Neither tier produced a page."""

    error: str


FetchOutcome = Union[StaticFetch, DynamicFetch, FailedFetch]


# ---------------------------------------------------------------------------
# Page fetcher
# ---------------------------------------------------------------------------


class PageFetcher:
    """Loads one URL and returns its :class:`~Models.CrawlPage` signal record.

    *client* and *context* are owned by the caller.  Without a browser
    *context* the fetcher is static-only and a failed or shell page is
    reported from whatever the static tier produced.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        context: Optional[BrowserContext] = None,
        heuristic: Optional[ShellHeuristic] = None,
        static_timeout: float = 8.0,
        dynamic_timeout: float = 15.0,
    ) -> None:
        self.client = client
        self.context = context
        self.heuristic = heuristic or ShellHeuristic()
        self.static_timeout = static_timeout
        self.dynamic_timeout = dynamic_timeout

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def fetch(self, url: str, depth: int = 0) -> CrawlPage:
        """Fetch *url* and convert the outcome into a :class:`CrawlPage`."""
        outcome = await self.resolve(url)
        return self.to_page(url, depth, outcome)

    async def resolve(self, url: str) -> FetchOutcome:
        """Run the static tier, falling back to the dynamic tier when needed."""
        html: Optional[str] = None
        static_signals: Optional[PageSignals] = None
        static_error = ""

        try:
            html = await self._fetch_static(url)
            static_signals = parse_html(html, url)
        except FetchError as exc:
            static_error = exc.message
            logger.debug("Static fetch failed for %s: %s", url, exc.message)
        except Exception as exc:
            static_error = f"Parse failure: {exc}"
            logger.debug("Static parse failed for %s: %s", url, exc)

        if static_signals is not None:
            is_shell, rule = self.heuristic.evaluate(static_signals)
            if not is_shell:
                return StaticFetch(html=html or "", signals=static_signals)
            logger.debug("Application shell detected at %s (%s)", url, rule)

        if self.context is None:
            if static_signals is not None:
                return StaticFetch(html=html or "", signals=static_signals)
            return FailedFetch(error=static_error)

        try:
            signals = await asyncio.wait_for(self._render(url), timeout=self.dynamic_timeout)
            return DynamicFetch(signals=signals)
        except asyncio.TimeoutError:
            dynamic_error = f"Render timed out after {self.dynamic_timeout:g}s"
        except FetchError as exc:
            dynamic_error = exc.message

        logger.debug("Dynamic render failed for %s: %s", url, dynamic_error)
        if static_signals is not None:
            return StaticFetch(html=html or "", signals=static_signals)
        return FailedFetch(error=f"{static_error}; {dynamic_error}" if static_error else dynamic_error)

    @staticmethod
    def to_page(url: str, depth: int, outcome: FetchOutcome) -> CrawlPage:
        """Convert a fetch outcome into the immutable page record."""
        if isinstance(outcome, FailedFetch):
            return CrawlPage.failed(url, depth, outcome.error)

        mode = "dynamic" if isinstance(outcome, DynamicFetch) else "static"
        signals = outcome.signals
        return CrawlPage(
            url=url,
            title=signals.title,
            mode=mode,
            depth=depth,
            links=signals.links,
            elements=signals.elements,
            forms=DetailedForms(signals.forms),
            inputs_count=signals.inputs_count,
            buttons_count=signals.buttons_count,
            text_length=signals.text_length,
            text_sample=signals.text_sample,
        )

    # ------------------------------------------------------------------
    # Static tier
    # ------------------------------------------------------------------

    async def _fetch_static(self, url: str) -> str:
        """Return the HTML body of *url* or raise :class:`FetchError`."""
        try:
            response = await self.client.get(
                url,
                timeout=self.static_timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        except httpx.TimeoutException:
            raise FetchError(url, f"Timed out after {self.static_timeout:g}s")
        except httpx.HTTPError as exc:
            raise FetchError(url, f"HTTP error: {exc}")

        if response.status_code >= 400:
            raise FetchError(url, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type.lower():
            raise FetchError(url, f"Non-HTML content-type '{content_type}'")

        if not response.text.strip():
            raise FetchError(url, "Empty response body")
        return response.text

    # ------------------------------------------------------------------
    # Dynamic tier
    # ------------------------------------------------------------------

    async def _render(self, url: str) -> PageSignals:
        """Render *url* in a new browser page and parse the resulting DOM."""
        page: Optional[Page] = None
        try:
            page = await self.context.new_page()
            await page.route("**/*", _block_heavy_resources)

            timeout_ms = int(self.dynamic_timeout * 1000)
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response and response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}")

            try:
                await page.wait_for_load_state("networkidle", timeout=min(timeout_ms, 5_000))
            except PlaywrightError:
                pass

            html = await page.content()
            signals = parse_html(html, page.url or url)
            try:
                rendered_text = await page.evaluate(
                    "() => (document.body && document.body.innerText) || ''"
                )
            except PlaywrightError:
                rendered_text = ""

            if rendered_text:
                text = " ".join(rendered_text.split())
                signals = replace(
                    signals, text_length=len(text), text_sample=text[:TEXT_SAMPLE_LENGTH]
                )
            return signals

        except PlaywrightError as exc:
            raise FetchError(url, f"Render failed: {exc}")
        finally:
            if page and not page.is_closed():
                try:
                    await page.close()
                except Exception:
                    pass


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in _BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()
