"""
Api/Services.py — One pipeline operation per call, with its own resources.

Every method opens the browser, HTTP client and planner it needs and closes
them before returning, so the HTTP server and the CLI can run operations
side by side without sharing state.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from Assembler import WorkflowAssembler, WorkflowDiscovery
from Canonicalizer import FormCanonicalizer
from Config import Settings
from Crawler import SiteCrawler, normalize_url
from Executor import FormTester, FormTestReport, WorkflowExecutor
from Fetcher import PageFetcher, browser_session, http_client, scoped_context
from Graph import WorkflowGraphBuilder
from Models import (
    CrawlProgress,
    CrawlResult,
    DetectedWorkflow,
    DiscoveryResult,
    ExecutionBatch,
    FillPlan,
    FormDetection,
    FormPage,
    WorkflowExecutionResult,
    WorkflowGraph,
    WorkflowStep,
)
from Planner import FormIntelligence, GroqIntelligence, build_intelligence

logger = logging.getLogger(__name__)


def _require_url(url: str) -> str:
    if not url or not normalize_url(url):
        raise ValueError("Missing or invalid URL")
    return url


class FlowServices:
    """The pipeline stages behind the HTTP endpoints and CLI sub-commands.

    Pass *intelligence* to pin the planner; otherwise one is built from
    *settings* per call and closed afterwards.
    """

    def __init__(
        self,
        settings: Settings,
        intelligence: Optional[FormIntelligence] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        on_progress: Optional[Callable[[CrawlProgress], None]] = None,
    ) -> None:
        self.settings = settings
        self._intelligence = intelligence
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.on_progress = on_progress
        self.graph_builder = WorkflowGraphBuilder()
        self.assembler = WorkflowAssembler()

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def intelligence(self) -> AsyncIterator[FormIntelligence]:
        if self._intelligence is not None:
            yield self._intelligence
            return
        intel = build_intelligence(self.settings)
        try:
            yield intel
        finally:
            if isinstance(intel, GroqIntelligence):
                await intel.aclose()

    @asynccontextmanager
    async def fetcher(self) -> AsyncIterator[PageFetcher]:
        async with http_client() as client, browser_session(self.settings.headless) as browser:
            async with scoped_context(browser) as context:
                yield PageFetcher(
                    client,
                    context,
                    static_timeout=self.settings.static_timeout,
                    dynamic_timeout=self.settings.dynamic_timeout,
                )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def crawl(self, url: str, max_depth: int = 3, max_pages: int = 50) -> CrawlResult:
        _require_url(url)
        if max_pages < 1 or max_depth < 0:
            raise ValueError("maxPages must be at least 1 and maxDepth not negative")
        async with self.fetcher() as fetcher:
            crawler = SiteCrawler(
                fetcher,
                url,
                max_pages=max_pages,
                max_depth=max_depth,
                concurrency=self.settings.concurrency,
                shutdown_event=self.shutdown_event,
                on_progress=self.on_progress,
            )
            return await crawler.crawl()

    async def detect_forms(self, crawl: CrawlResult) -> FormDetection:
        async with self.intelligence() as intel:
            return await FormCanonicalizer(intel).detect(crawl)

    def detect_workflows(self, crawl: CrawlResult) -> WorkflowGraph:
        return self.graph_builder.build(crawl)

    async def generate_workflows(self, graph: WorkflowGraph) -> list[DetectedWorkflow]:
        """Coverage workflows followed by whatever the planner proposes.

        A planner failure leaves the coverage workflows as the whole answer.
        """
        coverage = self.assembler.build_coverage_workflows(graph)
        if not graph.nodes:
            return coverage
        async with self.intelligence() as intel:
            try:
                planned = await intel.plan_workflows(graph)
            except Exception as exc:
                logger.warning("Workflow planning failed, using coverage only: %s", exc)
                planned = []
        return coverage + planned

    async def execute_workflows(
        self,
        workflows: list[DetectedWorkflow],
        on_result: Optional[Callable[[DetectedWorkflow, WorkflowExecutionResult], None]] = None,
    ) -> ExecutionBatch:
        async with self.intelligence() as intel, browser_session(self.settings.headless) as browser:
            return await self._executor(browser, intel).execute_many(workflows, on_result=on_result)

    async def execute_workflow(self, url: str, steps: list[WorkflowStep]) -> WorkflowExecutionResult:
        _require_url(url)
        async with self.intelligence() as intel, browser_session(self.settings.headless) as browser:
            return await self._executor(browser, intel).execute(url, steps)

    async def discover(self, url: str, max_pages: int = 15) -> DiscoveryResult:
        _require_url(url)
        async with self.intelligence() as intel, self.fetcher() as fetcher:
            discovery = WorkflowDiscovery(
                fetcher,
                intel,
                assembler=self.assembler,
                max_pages=max_pages,
                shutdown_event=self.shutdown_event,
            )
            return await discovery.discover(url)

    async def get_form_plan(self, url: str) -> dict:
        _require_url(url)
        async with self.intelligence() as intel, browser_session(self.settings.headless) as browser:
            tester = FormTester(self._executor(browser, intel), planner=intel, assembler=self.assembler)
            return await tester.get_form_plan(url)

    async def test_forms(
        self, form_pages: list[FormPage], custom_plan: Optional[FillPlan] = None
    ) -> FormTestReport:
        if not form_pages:
            return FormTestReport()
        async with self.intelligence() as intel, browser_session(self.settings.headless) as browser:
            tester = FormTester(self._executor(browser, intel), planner=intel, assembler=self.assembler)
            return await tester.test_forms(form_pages, custom_plan)

    def _executor(self, browser, intel: FormIntelligence) -> WorkflowExecutor:
        return WorkflowExecutor(
            browser,
            analyzer=intel,
            step_timeout=self.settings.step_timeout,
            shutdown_event=self.shutdown_event,
        )
