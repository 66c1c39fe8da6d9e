"""
Crawler/Crawler.py — Bounded breadth-first site crawler.

Starts from a seed URL, stays on the seed's host, and hands every page to a
fetcher (see :class:`~Fetcher.PageFetcher`).  Guarantees:
  - at most ``max_pages`` pages in the result, each URL at most once
    (after fragment / trailing-slash normalisation)
  - breadth-first order: results are appended level by level, in the order
    their URLs were discovered
  - a failed page becomes an ``error`` page with no links and the crawl
    goes on
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Union
from urllib.parse import urlparse, urlunparse

from Models import CrawlPage, CrawlProgress, CrawlResult

logger = logging.getLogger(__name__)

# File extensions that will never contain HTML worth crawling
_SKIP_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp",
        ".svg", ".ico", ".css", ".js", ".mjs", ".ts", ".map",
        ".zip", ".tar", ".gz", ".rar", ".7z", ".bz2",
        ".exe", ".dmg", ".pkg", ".deb", ".rpm", ".msi",
        ".mp4", ".mp3", ".wav", ".avi", ".mov", ".mkv", ".webm",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
        ".xml", ".json", ".csv", ".xls", ".xlsx", ".doc", ".docx",
        ".ppt", ".pptx",
    }
)

# Path prefixes that serve bundled assets rather than pages
_ASSET_PATH_PREFIXES: tuple[str, ...] = ("/assets/", "/static/", "/cdn/", "/images/")


class Fetcher(Protocol):
    async def fetch(self, url: str, depth: int = 0) -> CrawlPage: ...


def normalize_url(url: str) -> str:
    """Return *url* without fragment or trailing slash, or ``""`` if unusable.

    Scheme and host are lower-cased; the query string is kept.
    """
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return ""
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        return ""
    path = parsed.path.rstrip("/")
    return urlunparse(
        parsed._replace(
            scheme=parsed.scheme.lower(),
            netloc=parsed.netloc.lower(),
            path=path,
            fragment="",
        )
    )


# ---------------------------------------------------------------------------
# Site crawler
# ---------------------------------------------------------------------------


class SiteCrawler:
    """Async BFS crawler over a single site.

    Every URL at the same depth is fetched concurrently, bounded by
    :attr:`semaphore`.  Budget and visited-set bookkeeping happen on the
    event loop before any fetch of a level is dispatched, so concurrent
    fetches can never overrun :attr:`max_pages`.  Setting
    :attr:`shutdown_event` cancels the fetches still in flight and the
    partial result is flagged ``cancelled``.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        start_url: str,
        max_pages: int = 50,
        max_depth: int = 3,
        concurrency: int = 3,
        delay: float = 0.0,
        page_timeout: Optional[float] = 30.0,
        shutdown_event: Optional[asyncio.Event] = None,
        on_progress: Optional[Callable[[CrawlProgress], None]] = None,
    ) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if max_depth < 0:
            raise ValueError("max_depth must not be negative")

        self.fetcher = fetcher
        self.start_url = normalize_url(start_url)
        if not self.start_url:
            raise ValueError(f"Missing or invalid URL: {start_url!r}")
        self.max_pages = max_pages
        self.max_depth = max_depth
        self.semaphore = asyncio.Semaphore(max(1, concurrency))
        self.delay = delay
        self.page_timeout = page_timeout
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.on_progress = on_progress

        self.base_domain: str = urlparse(self.start_url).netloc

        self._visited: set[str] = set()
        self._queued: set[str] = set()
        self._results: list[CrawlPage] = []

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def crawl(self) -> CrawlResult:
        """Crawl from :attr:`start_url` and return the :class:`CrawlResult`."""
        current_batch: list[tuple[str, int]] = [(self.start_url, 0)]
        self._queued.add(self.start_url)
        cancelled = False

        while current_batch:
            if self.shutdown_event.is_set():
                cancelled = True
                break

            to_visit = self._reserve(current_batch)
            if not to_visit:
                break

            pages = await self._fetch_level(to_visit)

            next_batch: list[tuple[str, int]] = []
            for (url, depth), page in zip(to_visit, pages):
                if page is None:
                    # Skipped or cancelled because a shutdown was requested mid-level
                    cancelled = True
                    continue
                if isinstance(page, BaseException):
                    logger.debug("Fetcher raised for %s: %s", url, page)
                    page = CrawlPage.failed(url, depth, str(page) or type(page).__name__)

                self._results.append(page)
                self._emit_progress(page)

                if depth < self.max_depth:
                    for link in page.links:
                        norm = self._accept_link(link)
                        if norm:
                            self._queued.add(norm)
                            next_batch.append((norm, depth + 1))

            current_batch = next_batch

            if len(self._visited) >= self.max_pages:
                logger.info("max-pages limit (%d) reached", self.max_pages)
                break

            if current_batch and self.delay:
                await asyncio.sleep(self.delay)

        if self.shutdown_event.is_set():
            cancelled = True

        return CrawlResult(
            start_url=self.start_url,
            results=tuple(self._results),
            status="cancelled" if cancelled else "complete",
            error="Crawl cancelled before completion" if cancelled else None,
        )

    # ------------------------------------------------------------------
    # Frontier bookkeeping
    # ------------------------------------------------------------------

    def _reserve(self, batch: list[tuple[str, int]]) -> list[tuple[str, int]]:
        """Mark as visited, in order, every entry of *batch* that fits the budget."""
        to_visit: list[tuple[str, int]] = []
        for url, depth in batch:
            if len(self._visited) >= self.max_pages:
                break
            if url in self._visited:
                continue
            self._visited.add(url)
            to_visit.append((url, depth))
        return to_visit

    def _accept_link(self, link: str) -> str:
        """Return the normalised *link* if it should be queued, else ``""``."""
        norm = normalize_url(link)
        if not norm:
            return ""
        if norm in self._visited or norm in self._queued:
            return ""
        if not self._in_scope(norm) or self._should_skip(norm):
            return ""
        return norm

    # ------------------------------------------------------------------
    # Page visit
    # ------------------------------------------------------------------

    async def _fetch_level(
        self, to_visit: list[tuple[str, int]]
    ) -> list[Union[CrawlPage, BaseException, None]]:
        """Fetch one level, racing the fetches against :attr:`shutdown_event`.

        One entry per URL, in order: the page, the exception its visit
        raised, or *None* when the visit was skipped or cancelled.
        """
        tasks = [asyncio.ensure_future(self._bounded_visit(url, depth)) for url, depth in to_visit]
        stop = asyncio.ensure_future(self.shutdown_event.wait())
        try:
            pending: set[asyncio.Future] = set(tasks)
            while pending:
                done, pending = await asyncio.wait(
                    pending | {stop}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop in done:
                    logger.info(
                        "Shutdown requested, cancelling %d in-flight fetch(es)",
                        sum(1 for t in tasks if not t.done()),
                    )
                    break
                pending.discard(stop)
        finally:
            stop.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, stop, return_exceptions=True)

        pages: list[Union[CrawlPage, BaseException, None]] = []
        for task in tasks:
            if task.cancelled():
                pages.append(None)
            else:
                pages.append(task.exception() or task.result())
        return pages

    async def _bounded_visit(self, url: str, depth: int) -> Optional[CrawlPage]:
        async with self.semaphore:
            if self.shutdown_event.is_set():
                return None
            return await self._visit(url, depth)

    async def _visit(self, url: str, depth: int) -> CrawlPage:
        """Fetch one page; timeouts and fetcher errors become an error page."""
        try:
            if self.page_timeout:
                return await asyncio.wait_for(
                    self.fetcher.fetch(url, depth), timeout=self.page_timeout
                )
            return await self.fetcher.fetch(url, depth)
        except asyncio.TimeoutError:
            logger.debug("Fetch of %s exceeded %ss", url, self.page_timeout)
            return CrawlPage.failed(url, depth, f"Timed out after {self.page_timeout:g}s")
        except Exception as exc:
            logger.debug("Unexpected error visiting %s: %s", url, exc)
            return CrawlPage.failed(url, depth, str(exc) or type(exc).__name__)

    def _emit_progress(self, page: CrawlPage) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(
                CrawlProgress(
                    url=page.url,
                    depth=page.depth,
                    mode=page.mode,
                    pages_crawled=len(self._results),
                    max_pages=self.max_pages,
                )
            )
        except Exception as exc:
            logger.debug("Progress callback failed: %s", exc)

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    def _in_scope(self, url: str) -> bool:
        """Return *True* if *url* is on the same host as the seed."""
        try:
            return urlparse(url).netloc == self.base_domain
        except ValueError:
            return False

    def _should_skip(self, url: str) -> bool:
        """Return *True* if the URL points to a non-HTML resource."""
        try:
            path = urlparse(url).path.lower()
        except ValueError:
            return True
        if path.startswith(_ASSET_PATH_PREFIXES):
            return True
        _, dot, ext = path.rpartition(".")
        return bool(dot) and "/" not in ext and f".{ext}" in _SKIP_EXTENSIONS
