"""
tests/test_executor.py — Unit tests for WorkflowExecutor and FormTester.

A small fake page stands in for Playwright: selectors listed as present
resolve to a locator whose calls are ``AsyncMock`` objects, everything
else behaves like a missing element.
"""
import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from Executor import (
    NO_ACTIONABLE_REASON,
    FormTester,
    FormTestReport,
    FormTestResult,
    WorkflowExecutor,
    match_kept_form,
    split_selector,
)
from Models import (
    ClassifierError,
    DetectedWorkflow,
    FillAction,
    FillPlan,
    FormButton,
    FormInput,
    FormMeta,
    FormPage,
    OutcomeAnalysis,
    WorkflowExecutionResult,
    WorkflowStep,
)

URL = "https://shop.test/contact"

CONTACT_HTML = """
<html><head><title>Contact</title></head><body>
  <form id="contact">
    <input type="email" id="email" name="email">
    <textarea id="message" name="message"></textarea>
    <button id="send" type="submit">Send</button>
  </form>
</body></html>
"""


class FakeLocator:
    def __init__(self, present: bool):
        self.present = present
        self.count = AsyncMock(return_value=1 if present else 0)
        self.is_visible = AsyncMock(return_value=present)
        self.wait_for = AsyncMock(
            side_effect=None if present else PlaywrightError("Timeout 5000ms exceeded")
        )
        self.click = AsyncMock()
        self.fill = AsyncMock()
        self.press = AsyncMock()
        self.select_option = AsyncMock()
        self.evaluate = AsyncMock(return_value=[])

    @property
    def first(self):
        return self

    def locator(self, selector):
        return FakeLocator(False)


class FakePage:
    def __init__(self, present=(), texts=("Contact us", "Contact us"), url=URL, html=CONTACT_HTML):
        self.present = set(present)
        self.url = url
        self.locators: dict[str, FakeLocator] = {}
        self.goto = AsyncMock()
        self.wait_for_load_state = AsyncMock()
        self.wait_for_timeout = AsyncMock()
        self.keyboard = MagicMock(press=AsyncMock())
        self.evaluate = AsyncMock(side_effect=list(texts))
        self.content = AsyncMock(return_value=html)
        self.set_default_timeout = MagicMock()
        self.close = AsyncMock()
        self.closed = False

    def is_closed(self):
        return self.closed

    def locator(self, selector):
        if selector not in self.locators:
            self.locators[selector] = FakeLocator(selector in self.present)
        return self.locators[selector]

    def get_by_text(self, text):
        return FakeLocator(text in self.present)


class FakeContextFactory:
    def __init__(self, *pages: FakePage):
        self.pages = list(pages)
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self):
        self.opened += 1
        context = MagicMock()
        context.new_page = AsyncMock(side_effect=lambda: self.pages.pop(0))
        try:
            yield context
        finally:
            self.closed += 1


def make_executor(*pages: FakePage, **kwargs):
    factory = FakeContextFactory(*pages)
    defaults = dict(context_factory=factory, settle_delay=0, step_timeout=2)
    defaults.update(kwargs)
    return WorkflowExecutor(**defaults), factory


def steps(*specs) -> list[WorkflowStep]:
    return [WorkflowStep(i, *fields) for i, fields in enumerate(specs)]


# ---------------------------------------------------------------------------
# split_selector
# ---------------------------------------------------------------------------


class TestSplitSelector:
    def test_plain_list(self):
        assert split_selector("#a, .b ,c") == ["#a", ".b", "c"]

    def test_commas_in_quotes_kept(self):
        assert split_selector("button:has-text('Yes, please'), #x") == ["button:has-text('Yes, please')", "#x"]

    def test_commas_in_brackets_kept(self):
        assert split_selector("input[value='a,b']") == ["input[value='a,b']"]

    def test_empty(self):
        assert split_selector("  ") == []


# ---------------------------------------------------------------------------
# WorkflowExecutor
# ---------------------------------------------------------------------------


class TestExecute:
    def test_missing_step_target_is_error_and_run_continues(self):
        page = FakePage(present={"#name", "#send"})
        executor, _ = make_executor(page)
        run = steps(("fill", "#name", "John"), ("fill", "#missing", "x"), ("click", "#send"))
        result = asyncio.run(executor.execute(URL, run))

        assert [s.status for s in result.steps] == ["success", "error", "success"]
        assert "#missing" in result.steps[1].error
        assert result.status == "failed"
        assert result.confidence == 0.9
        page.locators["#send"].click.assert_awaited_once()

    def test_success_message_passes(self):
        page = FakePage(present={"#email", "#send"}, texts=("Contact us", "Contact us\nThank you for your message!"))
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#email", "a@b.c"), ("click", "#send"))))
        assert result.status == "passed"
        page.locators["#email"].fill.assert_awaited_once_with("a@b.c")

    def test_steps_run_in_order(self):
        order = []
        page = FakePage(present={"#a", "#b", "#c"})
        for sel in ("#a", "#b", "#c"):
            page.locator(sel).fill = AsyncMock(side_effect=lambda value, sel=sel: order.append(sel))
        executor, _ = make_executor(page)
        asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"), ("fill", "#b", "2"), ("fill", "#c", "3"))))
        assert order == ["#a", "#b", "#c"]

    def test_first_matching_alternative_used(self):
        page = FakePage(present={"#second"})
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("click", "#first, #second"))))
        assert result.steps[0].status == "success"
        page.locators["#second"].click.assert_awaited_once()

    def test_optional_absent_step_counts_as_success(self):
        page = FakePage(present={"#send"})
        executor, _ = make_executor(page)
        run = steps(("click", "#agree"), ("click", "#send"))
        run[0].optional = True
        result = asyncio.run(executor.execute(URL, run))
        assert [s.status for s in result.steps] == ["success", "success"]
        assert result.status != "failed"

    def test_skipped_steps_neither_run_nor_reported(self):
        page = FakePage(present={"#a", "#b"})
        executor, _ = make_executor(page)
        run = steps(("fill", "#a", "1"), ("fill", "#b", "2"))
        run[1].skip = True
        result = asyncio.run(executor.execute(URL, run))
        assert [s.selector for s in result.steps] == ["#a"]
        page.locator("#b").fill.assert_not_awaited()

    def test_caller_steps_untouched(self):
        page = FakePage(present={"#a"})
        executor, _ = make_executor(page)
        run = steps(("fill", "#a", "1"))
        asyncio.run(executor.execute(URL, run))
        assert run[0].status == "pending"

    def test_navigation_only_passes_when_pages_load(self):
        page = FakePage()
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("navigate", "", "/about"))))
        assert result.status == "passed"
        assert result.confidence == 0.8
        assert [s.status for s in result.steps] == ["success"]
        targets = [c.args[0] for c in page.goto.await_args_list]
        assert targets == [URL, "https://shop.test/about"]

    def test_failed_navigation_fails(self):
        page = FakePage()
        page.goto = AsyncMock(side_effect=[None, PlaywrightError("net::ERR_ABORTED")])
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("navigate", "", "/gone"))))
        assert result.status == "failed"
        assert "ERR_ABORTED" in result.steps[0].error

    def test_nothing_to_run_is_inconclusive(self):
        executor, _ = make_executor(FakePage())
        run = steps(("fill", "#a", "1"))
        run[0].skip = True
        result = asyncio.run(executor.execute(URL, run))
        assert result.status == "inconclusive"
        assert result.confidence == 0.5
        assert result.reason == NO_ACTIONABLE_REASON

    def test_assert_missing_text_is_error(self):
        page = FakePage(present={"Welcome"})
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("assert", "", "Welcome"), ("assert", "", "Goodbye"))))
        assert [s.status for s in result.steps] == ["success", "error"]

    def test_submit_presses_enter_without_form_button(self):
        page = FakePage(present={"#q"})
        executor, _ = make_executor(page)
        asyncio.run(executor.execute(URL, steps(("fill", "#q", "shirt"), ("submit", "#q"))))
        page.locators["#q"].press.assert_awaited_once_with("Enter")

    def test_select_falls_back_to_first_option(self):
        page = FakePage(present={"#size"})
        locator = page.locator("#size")
        locator.select_option = AsyncMock(side_effect=[PlaywrightError("no option"), None])
        locator.evaluate = AsyncMock(return_value=["s", "m"])
        executor, _ = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("select", "#size", "xl"))))
        assert result.steps[0].status == "success"
        assert locator.select_option.await_args_list[-1].args == ("s",)

    def test_step_timeout_is_error(self):
        page = FakePage(present={"#slow"})

        async def slow_fill(value):
            await asyncio.sleep(5)

        page.locator("#slow").fill = AsyncMock(side_effect=slow_fill)
        executor, _ = make_executor(page, step_timeout=0.05)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#slow", "x"))))
        assert result.steps[0].status == "error"
        assert "timed out" in result.steps[0].error
        assert result.status == "failed"

    def test_page_load_failure(self):
        page = FakePage()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        executor, factory = make_executor(page)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert result.status == "failed"
        assert "ERR_NAME_NOT_RESOLVED" in result.error
        page.close.assert_awaited_once()
        assert factory.closed == 1

    def test_context_closed_after_run(self):
        page = FakePage(present={"#a"})
        executor, factory = make_executor(page)
        asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert factory.opened == factory.closed == 1
        page.close.assert_awaited_once()

    def test_missing_url_rejected(self):
        executor, _ = make_executor(FakePage())
        with pytest.raises(ValueError):
            asyncio.run(executor.execute("", steps(("fill", "#a", "1"))))

    def test_requires_browser_or_factory(self):
        with pytest.raises(ValueError):
            WorkflowExecutor()


class TestVerdict:
    def test_analyzer_consulted_when_inconclusive(self):
        analyzer = MagicMock()
        analyzer.analyze_outcome = AsyncMock(return_value=OutcomeAnalysis("passed", 0.7, "looks good"))
        executor, _ = make_executor(FakePage(present={"#a"}), analyzer=analyzer)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert result.status == "passed"
        assert result.reason == "looks good"

    def test_analyzer_not_consulted_on_clear_signal(self):
        analyzer = MagicMock()
        analyzer.analyze_outcome = AsyncMock()
        page = FakePage(present={"#a"}, texts=("Form here", "Form here\nPlease enter a valid email"))
        executor, _ = make_executor(page, analyzer=analyzer)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert result.status == "failed"
        analyzer.analyze_outcome.assert_not_awaited()

    def test_analyzer_failure_keeps_rule_verdict(self):
        analyzer = MagicMock()
        analyzer.analyze_outcome = AsyncMock(side_effect=ClassifierError("down"))
        executor, _ = make_executor(FakePage(present={"#a"}), analyzer=analyzer)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert result.status == "inconclusive"


class TestCancellation:
    def test_preset_shutdown(self):
        event = asyncio.Event()
        event.set()
        executor, factory = make_executor(FakePage(), shutdown_event=event)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"))))
        assert result.status == "cancelled"
        assert factory.opened == 0

    def test_shutdown_between_steps(self):
        event = asyncio.Event()
        page = FakePage(present={"#a", "#b"})
        page.locator("#a").fill = AsyncMock(side_effect=lambda value: event.set())
        executor, factory = make_executor(page, shutdown_event=event)
        result = asyncio.run(executor.execute(URL, steps(("fill", "#a", "1"), ("fill", "#b", "2"))))
        assert result.status == "cancelled"
        assert [s.status for s in result.steps] == ["success", "pending"]
        assert factory.closed == 1


class TestExecuteMany:
    def test_batch_stats_and_callback(self):
        passing = FakePage(present={"#a"}, texts=("Form", "Form\nThank you, message sent"))
        failing = FakePage(present=set())
        executor, _ = make_executor(passing, failing)
        workflows = [
            DetectedWorkflow("w1", "contact", "Contact", page_url=URL, steps=steps(("fill", "#a", "1"))),
            DetectedWorkflow("w2", "login", "Login", page_url=URL, steps=steps(("fill", "#b", "1"))),
            DetectedWorkflow("w3", "other", "Nowhere", steps=steps(("fill", "#c", "1"))),
        ]
        seen = []
        batch = asyncio.run(executor.execute_many(workflows, on_result=lambda w, r: seen.append(w.id)))
        assert batch.stats == {"total": 3, "passed": 1, "failed": 2, "inconclusive": 0, "cancelled": 0}
        assert seen == ["w1", "w2", "w3"]
        assert batch.results[2][1].error == "Missing page URL"

    def test_first_navigate_step_used_as_page_url(self):
        page = FakePage()
        executor, _ = make_executor(page)
        workflow = DetectedWorkflow(
            "edge-0", "other", "Edge", steps=steps(("navigate", "", URL), ("navigate", "", "/about"))
        )
        batch = asyncio.run(executor.execute_many([workflow]))
        assert batch.results[0][1].status == "passed"
        assert page.goto.await_args_list[0].args[0] == URL

    def test_workflow_without_steps_not_opened(self):
        executor, factory = make_executor(FakePage())
        workflow = DetectedWorkflow(
            "login-0", "login", "Login", available=False, reason="No fillable form found", page_url=URL
        )
        batch = asyncio.run(executor.execute_many([workflow]))
        result = batch.results[0][1]
        assert result.status == "inconclusive"
        assert result.reason == "No fillable form found"
        assert factory.opened == 0


# ---------------------------------------------------------------------------
# FormTester
# ---------------------------------------------------------------------------


def make_form_page() -> FormPage:
    form = FormMeta(
        inputs=(FormInput(name="email", id="email", type="email", selector="#email"),),
        buttons=(FormButton("Send", "#send", "submit"),),
        selector="#contact",
    )
    return FormPage(url=URL, title="Contact", forms=1, inputs=1, buttons=1, forms_meta=[form])


class TestFormTester:
    def test_live_form_planned_and_executed(self):
        extract_page = FakePage()
        run_page = FakePage(
            present={"#email", "#message", "#send"}, texts=("Contact", "Contact\nThanks, we'll be in touch")
        )
        executor, _ = make_executor(extract_page, run_page)
        report = asyncio.run(FormTester(executor).test_forms([make_form_page()]))

        result = report.results[0]
        assert result.status == "passed"
        assert [a.selector for a in result.plan.fill_actions] == ["#email", "#message"]
        assert [s.selector for s in result.execution.steps] == ["#email", "#message", "#send"]
        assert report.pass_rate == 100

    def test_kept_form_tested_not_first_live_form(self):
        html = CONTACT_HTML.replace(
            "<body>",
            '<body>\n  <form id="search" action="/search"><input name="q"><button>Go</button></form>',
        )
        run_page = FakePage(present={"#email", "#message", "#send"})
        executor, _ = make_executor(FakePage(html=html), run_page)
        report = asyncio.run(FormTester(executor).test_forms([make_form_page()]))
        assert [s.selector for s in report.results[0].execution.steps] == ["#email", "#message", "#send"]
        run_page.locator("input[name='q']").fill.assert_not_awaited()

    def test_custom_plan_applied(self):
        run_page = FakePage(present={"#message", "#send"})
        executor, _ = make_executor(FakePage(), run_page)
        custom = FillPlan(
            [FillAction("#email", "x@y.z", skip=True), FillAction("#message", "Hello there")]
        )
        report = asyncio.run(FormTester(executor).test_forms([make_form_page()], custom))
        assert [s.selector for s in report.results[0].execution.steps] == ["#message", "#send"]
        run_page.locators["#message"].fill.assert_awaited_once_with("Hello there")

    def test_page_without_inputs_fails(self):
        html = "<html><head><title>Empty</title></head><body><form></form></body></html>"
        executor, _ = make_executor(FakePage(html=html))
        page = FormPage(url=URL, title="Empty")
        report = asyncio.run(FormTester(executor).test_forms([page]))
        assert report.results[0].status == "failed"
        assert report.results[0].error == "No form inputs found on page"

    def test_browser_error_bucketed_as_error(self):
        broken = FakePage()
        broken.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
        executor, _ = make_executor(broken)
        report = asyncio.run(FormTester(executor).test_forms([make_form_page()]))
        assert report.results[0].status == "error"
        assert len(report.errors) == 1
        assert report.to_dict()["errors"][0]["url"] == URL

    def test_planner_failure_uses_rules(self):
        planner = MagicMock()
        planner.plan_form_fill = AsyncMock(side_effect=ClassifierError("down"))
        run_page = FakePage(present={"#email", "#message", "#send"})
        executor, _ = make_executor(FakePage(), run_page)
        report = asyncio.run(FormTester(executor, planner=planner).test_forms([make_form_page()]))
        assert report.results[0].plan.submit_selector == "#send"

    def test_get_form_plan(self):
        executor, _ = make_executor(FakePage())
        data = asyncio.run(FormTester(executor).get_form_plan(URL))
        assert data["title"] == "Contact"
        assert [i["name"] for i in data["formData"]["inputs"]] == ["email", "message"]
        assert data["aiPlan"]["submitSelector"] == "#send"

    def test_get_form_plan_without_form(self):
        executor, _ = make_executor(FakePage(html="<html><body><p>Hi</p></body></html>"))
        with pytest.raises(ValueError, match="No forms found"):
            asyncio.run(FormTester(executor).get_form_plan(URL))


class TestFormTestReport:
    def make_result(self, status: str) -> FormTestResult:
        return FormTestResult(url=URL, status=status, execution=WorkflowExecutionResult(status=status))

    def test_pass_rate_ignores_inconclusive_and_errors(self):
        report = FormTestReport(
            [
                self.make_result("passed"),
                self.make_result("failed"),
                self.make_result("failed"),
                self.make_result("inconclusive"),
                FormTestResult(url=URL, status="error", error="boom"),
            ]
        )
        data = report.to_dict()
        assert data["total"] == 5
        assert data["passRate"] == 33
        assert len(data["inconclusive"]) == 1
        assert len(data["errors"]) == 1

    def test_empty_report(self):
        assert FormTestReport().pass_rate == 0


class TestMatchKeptForm:
    def make_form(self, selector: str, *names: str) -> FormMeta:
        inputs = tuple(FormInput(name=n, id=n, type="text", selector=f"#{n}") for n in names)
        return FormMeta(inputs=inputs, selector=selector)

    def test_matched_by_selector(self):
        live = [self.make_form("#search", "q"), self.make_form("#contact", "name", "body")]
        kept = [self.make_form("#contact", "name")]
        assert match_kept_form(live, kept) is live[1]

    def test_matched_by_signature(self):
        live = [self.make_form("#search", "q"), self.make_form("#contact", "name", "body")]
        kept = [self.make_form("form:nth-of-type(2)", "name", "body")]
        assert match_kept_form(live, kept) is live[1]

    def test_recorded_form_used_when_missing_live(self):
        live = [self.make_form("#search", "q")]
        kept = [self.make_form("#contact", "name", "body")]
        assert match_kept_form(live, kept) is kept[0]

    def test_first_live_form_without_kept(self):
        live = [self.make_form("#empty"), self.make_form("#search", "q")]
        assert match_kept_form(live, []) is live[1]

    def test_nothing_usable(self):
        assert match_kept_form([self.make_form("#empty")], []) is None
