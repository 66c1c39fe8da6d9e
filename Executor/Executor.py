"""
Executor/Executor.py — Runs workflow steps against a live page and judges the outcome.

Each run owns one browser context for its whole lifetime.  Steps run strictly
in order; a failing step is recorded and the run carries on, so the verdict
can tell a broken field apart from a broken workflow.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import replace
from typing import Callable, Optional
from urllib.parse import urljoin

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Locator,
    Page,
)

from Fetcher import scoped_context
from Models import (
    ACTIONABLE_STEPS,
    DetectedWorkflow,
    ExecutionBatch,
    SelectorNotFound,
    WorkflowExecutionResult,
    WorkflowStep,
)
from Planner import FALLBACK_SUBMIT_SELECTOR, FormIntelligence, PageState, detect_outcome

logger = logging.getLogger(__name__)

ContextFactory = Callable[[], AbstractAsyncContextManager[BrowserContext]]

NO_ACTIONABLE_REASON = "No steps to execute"

# Cookie banners and modals that block clicks, tried in order
_OVERLAY_SELECTORS: tuple[str, ...] = (
    "#onetrust-accept-btn-handler",
    "button:has-text('Accept all')",
    "button:has-text('Accept All')",
    "button:has-text('Accept')",
    "button:has-text('I agree')",
    "button:has-text('Got it')",
    "[aria-label='Close']",
    "[aria-label='close']",
    ".modal button.close",
    "button:has-text('No thanks')",
)

_SUBMIT_IN_FORM = "button[type=submit], input[type=submit], button:not([type])"


def split_selector(selector: str) -> list[str]:
    """Split a comma-separated selector list, ignoring commas in quotes or brackets."""
    parts: list[str] = []
    depth = 0
    quote = ""
    current: list[str] = []
    for ch in selector:
        if quote:
            if ch == quote:
                quote = ""
        elif ch in ("'", '"'):
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            part = "".join(current).strip()
            if part:
                parts.append(part)
            current = []
            continue
        current.append(ch)
    part = "".join(current).strip()
    if part:
        parts.append(part)
    return parts


async def dismiss_overlays(page: Page) -> None:
    """Close cookie banners and modals that would intercept clicks, best effort."""
    for sel in _OVERLAY_SELECTORS:
        try:
            button = page.locator(sel).first
            if await button.count() and await button.is_visible():
                await button.click(timeout=2_000)
                logger.debug("Dismissed overlay via %s", sel)
                await page.wait_for_timeout(300)
                return
        except PlaywrightError:
            continue
    try:
        await page.keyboard.press("Escape")
    except PlaywrightError:
        pass


async def page_state(page: Page) -> PageState:
    try:
        text = await page.evaluate("() => document.body ? document.body.innerText : ''")
    except PlaywrightError:
        text = ""
    return PageState(url=page.url, text=text or "")


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Drives :class:`~Models.WorkflowStep` lists on a live Playwright page.

    *analyzer* is consulted only when the rule-based outcome check is
    inconclusive; when it fails the rule-based verdict stands.
    """

    def __init__(
        self,
        browser: Optional[Browser] = None,
        analyzer: Optional[FormIntelligence] = None,
        step_timeout: float = 20.0,
        assert_timeout: float = 8.0,
        locate_timeout: float = 5.0,
        navigation_timeout: float = 30.0,
        settle_delay: float = 1.0,
        shutdown_event: Optional[asyncio.Event] = None,
        context_factory: Optional[ContextFactory] = None,
    ) -> None:
        if browser is None and context_factory is None:
            raise ValueError("Either a browser or a context factory is required")
        self.browser = browser
        self.analyzer = analyzer
        self.step_timeout = step_timeout
        self.assert_timeout = assert_timeout
        self.locate_timeout = locate_timeout
        self.navigation_timeout = navigation_timeout
        self.settle_delay = settle_delay
        self.shutdown_event = shutdown_event or asyncio.Event()
        self._context_factory = context_factory or (lambda: scoped_context(self.browser))

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def execute(self, page_url: str, steps: list[WorkflowStep]) -> WorkflowExecutionResult:
        """Run *steps* on a fresh page at *page_url*.

        Skipped steps are neither run nor reported.  The caller's step
        objects are left untouched.
        """
        if not page_url:
            raise ValueError("Missing page URL")
        run = [replace(s, status="pending", error=None) for s in steps if not s.skip]

        if self.shutdown_event.is_set():
            return self._cancelled(run)

        async with self._context_factory() as context:
            page: Optional[Page] = None
            try:
                page = await context.new_page()
                page.set_default_timeout(self.locate_timeout * 1000)
                await self._open(page, page_url)
                before = await page_state(page)

                for step in run:
                    if self.shutdown_event.is_set():
                        return self._cancelled(run)
                    await self._run_step(page, step)

                await self._settle(page)
                after = await page_state(page)
            except PlaywrightError as exc:
                logger.debug("Playwright error while executing on %s: %s", page_url, exc)
                return WorkflowExecutionResult(
                    status="failed",
                    confidence=0.0,
                    reason="Page could not be loaded or crashed during the workflow",
                    steps=run,
                    error=str(exc),
                )
            finally:
                if page and not page.is_closed():
                    try:
                        await page.close()
                    except Exception:
                        pass

        return await self._verdict(run, before, after)

    async def execute_many(
        self,
        workflows: list[DetectedWorkflow],
        on_result: Optional[Callable[[DetectedWorkflow, WorkflowExecutionResult], None]] = None,
    ) -> ExecutionBatch:
        """Run *workflows* sequentially; one failure never stops the batch.

        *on_result* is called after every workflow, in run order.
        """
        batch = ExecutionBatch()
        for workflow in workflows:
            page_url = workflow.page_url or self._first_navigation(workflow.steps)
            if not workflow.steps:
                result = WorkflowExecutionResult(
                    status="inconclusive",
                    confidence=0.5,
                    reason=workflow.reason or "Workflow has no steps",
                )
            elif not page_url:
                result = WorkflowExecutionResult(
                    status="failed",
                    reason="Workflow has no page URL",
                    steps=list(workflow.steps),
                    error="Missing page URL",
                )
            else:
                try:
                    result = await self.execute(page_url, workflow.steps)
                except Exception as exc:
                    logger.warning("Workflow %s crashed: %s", workflow.id, exc)
                    result = WorkflowExecutionResult(
                        status="failed",
                        reason="Workflow execution crashed",
                        steps=list(workflow.steps),
                        error=str(exc),
                    )
            batch.results.append((workflow, result))
            if on_result is not None:
                on_result(workflow, result)
            if self.shutdown_event.is_set():
                break
        return batch

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(self, page: Page, step: WorkflowStep) -> None:
        try:
            await asyncio.wait_for(self._perform(page, step), timeout=self.step_timeout)
            step.status = "success"
        except SelectorNotFound as exc:
            if step.optional:
                logger.debug("Optional step %d skipped, target absent: %s", step.index, exc.selector)
                step.status = "success"
            else:
                step.status = "error"
                step.error = str(exc)
        except asyncio.TimeoutError:
            step.status = "error"
            step.error = f"Step timed out after {self.step_timeout:g}s"
        except PlaywrightError as exc:
            step.status = "error"
            step.error = str(exc).splitlines()[0] if str(exc) else "Browser error"
        logger.debug("Step %d (%s %s): %s", step.index, step.action, step.selector, step.status)

    async def _perform(self, page: Page, step: WorkflowStep) -> None:
        action = step.action
        if action == "navigate":
            target = urljoin(page.url, step.value or step.selector)
            await page.goto(target, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
            await dismiss_overlays(page)
            return

        if action == "assert":
            try:
                await page.get_by_text(step.value).first.wait_for(
                    state="visible", timeout=self.assert_timeout * 1000
                )
            except PlaywrightError as exc:
                raise SelectorNotFound(f"text={step.value}", "assertion text not visible") from exc
            return

        if action == "submit":
            await self._submit(page, step.selector)
            return

        locator = await self._locate(page, step.selector)
        if action == "fill":
            await locator.fill(step.value)
        elif action == "select":
            await self._select(locator, step.value)
        elif action == "click":
            await locator.click()
            try:
                await page.wait_for_load_state("domcontentloaded", timeout=5_000)
            except PlaywrightError:
                pass

    async def _locate(self, page: Page, selector: str) -> Locator:
        """Return the first alternative in *selector* that matches an element."""
        alternatives = split_selector(selector)
        if not alternatives:
            raise SelectorNotFound(selector, "empty selector")
        for alt in alternatives:
            try:
                locator = page.locator(alt).first
                if await locator.count():
                    return locator
            except PlaywrightError:
                continue
        # nothing there yet; give the first alternative time to appear
        locator = page.locator(alternatives[0]).first
        try:
            await locator.wait_for(state="attached", timeout=self.locate_timeout * 1000)
        except PlaywrightError as exc:
            raise SelectorNotFound(selector) from exc
        return locator

    async def _select(self, locator: Locator, value: str) -> None:
        try:
            await locator.select_option(value)
            return
        except PlaywrightError:
            logger.debug("Option %r not available, falling back to the first option", value)
        options = await locator.evaluate(
            "el => Array.from(el.options || []).map(o => o.value).filter(v => v)"
        )
        if not options:
            raise SelectorNotFound(f"{value} option", "select has no usable options")
        await locator.select_option(options[0])

    async def _submit(self, page: Page, selector: str) -> None:
        """Click the submit button of the field's form, else press Enter in the field."""
        if not selector:
            button = await self._locate(page, FALLBACK_SUBMIT_SELECTOR)
            await button.click()
            return
        field = await self._locate(page, selector)
        button = field.locator("xpath=ancestor::form").locator(_SUBMIT_IN_FORM).first
        try:
            if await button.count() and await button.is_visible():
                await button.click()
                return
        except PlaywrightError:
            pass
        await field.press("Enter")

    # ------------------------------------------------------------------
    # Verdict
    # ------------------------------------------------------------------

    async def _verdict(
        self, steps: list[WorkflowStep], before: PageState, after: PageState
    ) -> WorkflowExecutionResult:
        errors = [s for s in steps if s.status == "error" and not s.optional]
        if errors:
            first = errors[0]
            return WorkflowExecutionResult(
                status="failed",
                confidence=0.9,
                reason=f"{len(errors)} step(s) failed; first at step {first.index}: {first.error}",
                steps=steps,
            )
        if not any(s.action in ACTIONABLE_STEPS for s in steps):
            # navigation and assertion runs pass once every page loaded and every check held
            if not steps:
                return WorkflowExecutionResult(
                    status="inconclusive", confidence=0.5, reason=NO_ACTIONABLE_REASON, steps=steps
                )
            return WorkflowExecutionResult(
                status="passed",
                confidence=0.8,
                reason=f"All {len(steps)} navigation/assertion step(s) succeeded",
                steps=steps,
            )

        outcome = detect_outcome(before, after)
        if outcome.status == "inconclusive" and self.analyzer is not None:
            try:
                outcome = await self.analyzer.analyze_outcome(before, after)
            except Exception as exc:
                logger.warning("Outcome analysis failed, keeping rule-based verdict: %s", exc)
        return WorkflowExecutionResult(
            status=outcome.status,
            confidence=outcome.confidence,
            reason=outcome.reason,
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open(self, page: Page, url: str) -> None:
        await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
        try:
            await page.wait_for_load_state("networkidle", timeout=10_000)
        except PlaywrightError:
            pass
        await dismiss_overlays(page)

    async def _settle(self, page: Page) -> None:
        try:
            await page.wait_for_load_state("networkidle", timeout=10_000)
        except PlaywrightError:
            pass
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

    @staticmethod
    def _first_navigation(steps: list[WorkflowStep]) -> str:
        for step in steps:
            if step.action == "navigate" and (step.value or step.selector):
                return step.value or step.selector
        return ""

    @staticmethod
    def _cancelled(steps: list[WorkflowStep]) -> WorkflowExecutionResult:
        return WorkflowExecutionResult(
            status="cancelled",
            reason="Execution cancelled before completion",
            steps=steps,
        )
