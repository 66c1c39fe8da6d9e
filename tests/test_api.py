"""
tests/test_api.py — Unit tests for the HTTP surface.

The pipeline behind the routes is a ``MagicMock`` with ``AsyncMock``
coroutines, so only request decoding, response shapes and error mapping
are exercised here.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from Api import create_app
from Config import Settings
from Models import (
    CrawlPage,
    CrawlResult,
    DetectedWorkflow,
    DiscoveryResult,
    ExecutionBatch,
    FetchError,
    FormDetection,
    FormPage,
    WorkflowExecutionResult,
    WorkflowGraph,
    WorkflowStep,
)
from Executor import FormTestReport

URL = "https://shop.test"


def make_services() -> MagicMock:
    services = MagicMock()
    services.crawl = AsyncMock(
        return_value=CrawlResult(start_url=URL, results=(CrawlPage(url=URL + "/", title="Home"),))
    )
    services.detect_forms = AsyncMock(
        return_value=FormDetection(total_pages=1, pages_with_forms=1, form_pages=[FormPage(url=URL + "/contact")])
    )
    services.detect_workflows = MagicMock(return_value=WorkflowGraph())
    services.generate_workflows = AsyncMock(return_value=[])
    services.execute_workflows = AsyncMock(return_value=ExecutionBatch())
    services.execute_workflow = AsyncMock(return_value=WorkflowExecutionResult(status="passed", confidence=0.8))
    services.discover = AsyncMock(return_value=DiscoveryResult(url=URL))
    services.get_form_plan = AsyncMock(return_value={"url": URL, "aiPlan": {}})
    services.test_forms = AsyncMock(return_value=FormTestReport())
    return services


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def client(services):
    app = create_app(Settings(), services=services)
    return TestClient(app, raise_server_exceptions=False)


CRAWL_DATA = {"startUrl": URL, "results": [{"url": URL + "/", "title": "Home"}]}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_heuristic_planner(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "planner": "heuristic"}

    def test_groq_planner(self, services):
        app = create_app(Settings(groq_api_key="k"), services=services)
        assert TestClient(app).get("/health").json()["planner"] == "groq"


# ---------------------------------------------------------------------------
# Crawl
# ---------------------------------------------------------------------------


class TestIntelligentCrawl:
    def test_defaults(self, client, services):
        response = client.post("/intelligent-crawl", json={"url": URL})
        assert response.status_code == 200
        assert response.json()["startUrl"] == URL
        assert response.json()["totalPages"] == 1
        services.crawl.assert_awaited_once_with(URL, max_depth=3, max_pages=50)

    def test_api_prefix(self, client, services):
        response = client.post("/api/intelligent-crawl", json={"url": URL, "maxDepth": 1, "maxPages": 5})
        assert response.status_code == 200
        services.crawl.assert_awaited_once_with(URL, max_depth=1, max_pages=5)

    def test_missing_url(self, client, services):
        response = client.post("/intelligent-crawl", json={})
        assert response.status_code == 400
        assert response.json()["error"].startswith("url")
        services.crawl.assert_not_awaited()

    def test_limit_out_of_range(self, client):
        response = client.post("/intelligent-crawl", json={"url": URL, "maxPages": 0})
        assert response.status_code == 400
        assert "maxPages" in response.json()["error"]

    def test_invalid_url_is_bad_request(self, client, services):
        services.crawl.side_effect = ValueError("Missing or invalid URL")
        response = client.post("/intelligent-crawl", json={"url": "not a url"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing or invalid URL"}

    def test_processing_failure_is_server_error(self, client, services):
        services.crawl.side_effect = FetchError(URL, "Connection refused")
        response = client.post("/intelligent-crawl", json={"url": URL})
        assert response.status_code == 500
        assert "Connection refused" in response.json()["error"]


# ---------------------------------------------------------------------------
# Detection and generation
# ---------------------------------------------------------------------------


class TestDetection:
    def test_detect_forms(self, client, services):
        response = client.post("/detect-forms", json={"crawlData": CRAWL_DATA})
        assert response.status_code == 200
        assert response.json()["formPages"][0]["url"] == URL + "/contact"
        crawl = services.detect_forms.await_args.args[0]
        assert isinstance(crawl, CrawlResult)
        assert crawl.results[0].title == "Home"

    def test_detect_forms_without_results(self, client):
        response = client.post("/detect-forms", json={"crawlData": {"startUrl": URL}})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing crawl results"

    def test_detect_workflows(self, client, services):
        response = client.post("/api/detect-workflows", json={"crawlData": CRAWL_DATA})
        assert response.status_code == 200
        assert response.json()["nodes"] == []
        services.detect_workflows.assert_called_once()

    def test_generate_workflows(self, client, services):
        services.generate_workflows.return_value = [
            DetectedWorkflow("flow-0", "other", "Visit home", steps=[WorkflowStep(0, "navigate", value=URL)])
        ]
        graph = {"nodes": [{"id": URL + "/", "url": URL + "/"}], "edges": []}
        response = client.post("/generate-workflows", json={"detection": graph})
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["workflows"][0]["id"] == "flow-0"
        passed = services.generate_workflows.await_args.args[0]
        assert [n.id for n in passed.nodes] == [URL + "/"]

    def test_generate_without_nodes(self, client):
        response = client.post("/generate-workflows", json={"detection": {}})
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


WORKFLOW = {
    "id": "login",
    "type": "login",
    "name": "Login",
    "pageUrl": URL + "/login",
    "steps": [{"action": "fill", "selector": "#email", "value": "a@b.c"}, {"action": "click", "selector": "#go"}],
}


class TestExecution:
    def test_execute_workflows(self, client, services):
        response = client.post("/execute-workflows", json={"workflows": [WORKFLOW]})
        assert response.status_code == 200
        assert response.json()["stats"]["total"] == 0
        workflows = services.execute_workflows.await_args.args[0]
        assert workflows[0].page_url == URL + "/login"
        assert [s.index for s in workflows[0].steps] == [0, 1]

    def test_execute_workflows_accepts_workflow_without_steps(self, client, services):
        stepless = {"id": "login-0", "type": "login", "name": "Login", "available": False, "steps": []}
        response = client.post("/execute-workflows", json={"workflows": [WORKFLOW, stepless]})
        assert response.status_code == 200
        workflows = services.execute_workflows.await_args.args[0]
        assert workflows[1].steps == []

    def test_execute_workflows_empty(self, client):
        response = client.post("/execute-workflows", json={"workflows": []})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing workflows array"

    def test_execute_single_prefers_page_url(self, client, services):
        body = {"url": URL, "pageUrl": URL + "/login", "steps": WORKFLOW["steps"]}
        response = client.post("/execute-workflow", json=body)
        assert response.status_code == 200
        assert response.json()["status"] == "passed"
        url, steps = services.execute_workflow.await_args.args
        assert url == URL + "/login"
        assert [s.action for s in steps] == ["fill", "click"]

    def test_execute_single_unknown_action(self, client):
        body = {"url": URL, "steps": [{"action": "hover", "selector": "#x"}]}
        response = client.post("/execute-workflow", json=body)
        assert response.status_code == 400
        assert "Unsupported action" in response.json()["error"]

    def test_discover(self, client, services):
        response = client.post("/discover-workflows", json={"url": URL})
        assert response.status_code == 200
        assert response.json()["url"] == URL
        services.discover.assert_awaited_once_with(URL, max_pages=15)


# ---------------------------------------------------------------------------
# Form testing
# ---------------------------------------------------------------------------


class TestForms:
    def test_get_form_plan(self, client, services):
        response = client.post("/get-form-plan", json={"url": URL})
        assert response.json() == {"url": URL, "aiPlan": {}}

    def test_test_forms_with_custom_plan(self, client, services):
        body = {
            "formPages": [{"url": URL + "/contact", "title": "Contact"}],
            "customPlan": {"fillActions": [{"selector": "#email", "value": "x@y.z"}], "submitSelector": "#send"},
        }
        response = client.post("/test-forms", json=body)
        assert response.status_code == 200
        assert response.json()["passRate"] == 0
        pages, plan = services.test_forms.await_args.args
        assert pages[0].title == "Contact"
        assert plan.submit_selector == "#send"

    def test_test_forms_empty(self, client):
        response = client.post("/test-forms", json={"formPages": []})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing formPages array"
