"""
Executor/FormTester.py — Fill-and-submit checks for canonical form pages.

For each :class:`~Models.FormPage` the live page is loaded, its first form is
read back from the rendered DOM, a fill plan is drafted (or the caller's
plan is applied) and the assembled workflow is run by the
:class:`~Executor.Executor.WorkflowExecutor`.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError

from Assembler import WorkflowAssembler, apply_custom_plan
from Canonicalizer import form_signature
from Fetcher import parse_html
from Models import FillPlan, FormMeta, FormPage, WorkflowExecutionResult
from Planner import FormIntelligence, HeuristicIntelligence

from .Executor import ContextFactory, WorkflowExecutor, dismiss_overlays

logger = logging.getLogger(__name__)


def match_kept_form(live: list[FormMeta], kept: list[FormMeta]) -> Optional[FormMeta]:
    """Pick the live form that detection kept for this page.

    Kept forms are matched by selector, then by signature.  A kept form with
    no live counterpart is used as recorded; without any kept form the first
    live form with inputs is taken.
    """
    candidates = [f for f in live if f.inputs]
    for target in kept:
        if target.selector:
            for form in candidates:
                if form.selector == target.selector:
                    return form
        signature = form_signature(target)
        for form in candidates:
            if form_signature(form) == signature:
                return form
    recorded = next((f for f in kept if f.inputs), None)
    if recorded is not None:
        return recorded
    return candidates[0] if candidates else None


@dataclass
class FormTestResult:
    url: str
    title: str = ""
    status: str = "pending"
    """``passed``, ``failed``, ``inconclusive`` or ``error``."""

    plan: Optional[FillPlan] = None
    execution: Optional[WorkflowExecutionResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "status": self.status,
            "aiPlan": self.plan.to_dict() if self.plan else None,
            "steps": [s.to_dict() for s in self.execution.steps] if self.execution else [],
            "confidence": round(self.execution.confidence, 2) if self.execution else 0.0,
            "reason": self.execution.reason if self.execution else "",
            "error": self.error,
        }


@dataclass
class FormTestReport:
    results: list[FormTestResult] = field(default_factory=list)

    def bucket(self, status: str) -> list[FormTestResult]:
        return [r for r in self.results if r.status == status]

    @property
    def errors(self) -> list[FormTestResult]:
        return [r for r in self.results if r.status not in ("passed", "failed", "inconclusive")]

    @property
    def pass_rate(self) -> int:
        passed = len(self.bucket("passed"))
        completed = passed + len(self.bucket("failed"))
        return round(passed / completed * 100) if completed else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.results),
            "passed": [r.to_dict() for r in self.bucket("passed")],
            "failed": [r.to_dict() for r in self.bucket("failed")],
            "inconclusive": [r.to_dict() for r in self.bucket("inconclusive")],
            "errors": [r.to_dict() for r in self.errors],
            "passRate": self.pass_rate,
        }


class FormTester:
    """Tests form pages one after another with a fresh browser context each."""

    def __init__(
        self,
        executor: WorkflowExecutor,
        planner: Optional[FormIntelligence] = None,
        assembler: Optional[WorkflowAssembler] = None,
        context_factory: Optional[ContextFactory] = None,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.executor = executor
        self.planner = planner or HeuristicIntelligence()
        self.assembler = assembler or WorkflowAssembler()
        self._context_factory = context_factory or executor._context_factory
        self.shutdown_event = shutdown_event or executor.shutdown_event
        self._fallback = HeuristicIntelligence()

    async def test_forms(
        self, form_pages: list[FormPage], custom_plan: Optional[FillPlan] = None
    ) -> FormTestReport:
        report = FormTestReport()
        for i, form_page in enumerate(form_pages, start=1):
            if self.shutdown_event.is_set():
                break
            logger.info("Testing form %d/%d: %s", i, len(form_pages), form_page.url)
            try:
                result = await self.test_form_page(form_page, custom_plan)
            except Exception as exc:
                logger.warning("Unexpected error testing %s: %s", form_page.url, exc)
                result = FormTestResult(
                    url=form_page.url, title=form_page.title, status="error", error=str(exc)
                )
            report.results.append(result)
        logger.info(
            "Form testing complete: %d passed, %d failed, %d inconclusive, %d errors",
            len(report.bucket("passed")),
            len(report.bucket("failed")),
            len(report.bucket("inconclusive")),
            len(report.errors),
        )
        return report

    async def test_form_page(
        self, form_page: FormPage, custom_plan: Optional[FillPlan] = None
    ) -> FormTestResult:
        result = FormTestResult(url=form_page.url, title=form_page.title)
        try:
            title, live = await self.extract_live_forms(form_page.url)
        except PlaywrightError as exc:
            result.status = "error"
            result.error = str(exc).splitlines()[0] if str(exc) else "Browser error"
            return result

        result.title = form_page.title or title
        form = match_kept_form(live, form_page.forms_meta)
        if form is None or not form.inputs:
            result.status = "failed"
            result.error = "No form inputs found on page"
            return result

        plan = await self._plan(form, form_page.url, result.title)
        plan = apply_custom_plan(plan, custom_plan)
        result.plan = plan
        if not plan.fill_actions:
            result.status = "failed"
            result.error = "Could not generate a form fill plan"
            return result

        steps = self.assembler.assemble_form_workflow(form_page, form, plan)
        execution = await self.executor.execute(form_page.url, steps)
        result.execution = execution
        result.status = execution.status
        result.error = execution.error
        return result

    async def get_form_plan(self, url: str) -> dict[str, Any]:
        """Read the first form on *url* and return the plan that would be used."""
        if not url:
            raise ValueError("Missing url")
        title, live = await self.extract_live_forms(url)
        form = match_kept_form(live, [])
        if form is None:
            raise ValueError("No forms found on page")
        plan = await self._plan(form, url, title)
        return {
            "url": url,
            "title": title,
            "formData": {
                "inputs": [i.to_dict() for i in form.inputs],
                "buttons": [b.to_dict() for b in form.buttons],
            },
            "aiPlan": plan.to_dict(),
        }

    async def extract_live_forms(self, url: str) -> tuple[str, list[FormMeta]]:
        """Load *url* in a scoped context and parse every form on the rendered page."""
        async with self._context_factory() as context:
            page = await context.new_page()
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=30_000)
                try:
                    await page.wait_for_load_state("networkidle", timeout=10_000)
                except PlaywrightError:
                    pass
                await dismiss_overlays(page)
                html = await page.content()
            finally:
                try:
                    await page.close()
                except Exception:
                    pass

        signals = parse_html(html, url)
        return signals.title, list(signals.forms)

    async def _plan(self, form: FormMeta, url: str, title: str) -> FillPlan:
        try:
            return await self.planner.plan_form_fill(form, url, title)
        except Exception as exc:
            logger.warning("Planner failed for %s, using rule-based plan: %s", url, exc)
            return await self._fallback.plan_form_fill(form, url, title)
