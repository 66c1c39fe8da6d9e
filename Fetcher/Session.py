"""
Fetcher/Session.py — Scoped browser and HTTP client lifecycles.

Both the CLI and the HTTP server open exactly one Chromium per pipeline run;
browser contexts are created per stage and closed on every exit path.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from playwright.async_api import Browser, BrowserContext, async_playwright

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@asynccontextmanager
async def browser_session(headless: bool = True) -> AsyncIterator[Browser]:
    """Launch Chromium for the duration of the ``async with`` block."""
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=headless)
        try:
            yield browser
        finally:
            try:
                await browser.close()
            except Exception:
                pass


@asynccontextmanager
async def scoped_context(browser: Browser) -> AsyncIterator[BrowserContext]:
    """Yield a fresh :class:`BrowserContext` that is always closed afterwards."""
    context = await browser.new_context(user_agent=BROWSER_USER_AGENT, ignore_https_errors=True)
    try:
        yield context
    finally:
        try:
            await context.close()
        except Exception:
            logger.debug("Browser context was already closed")


@asynccontextmanager
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Shared httpx client for the static fetch tier."""
    async with httpx.AsyncClient(follow_redirects=True) as client:
        yield client
