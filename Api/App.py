"""
Api/App.py — FastAPI surface for the discovery and verification pipeline.

Every route is served both at the root and under ``/api``.  Bad input is a
400, anything that breaks while processing is a 500; both carry
``{"error": message}``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from Config import Settings
from Models import (
    CrawlResult,
    DetectedWorkflow,
    FillPlan,
    FormPage,
    WorkflowGraph,
    steps_from_list,
)

from .Services import FlowServices

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class CrawlRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Start URL")
    maxDepth: int = Field(default=3, ge=0, le=10)
    maxPages: int = Field(default=50, ge=1, le=500)


class CrawlDataRequest(BaseModel):
    crawlData: dict[str, Any]


class GenerateRequest(BaseModel):
    detection: dict[str, Any]


class ExecuteManyRequest(BaseModel):
    workflows: list[dict[str, Any]]


class ExecuteRequest(BaseModel):
    url: str = Field(..., min_length=1)
    pageUrl: Optional[str] = None
    steps: list[dict[str, Any]]


class DiscoverRequest(BaseModel):
    url: str = Field(..., min_length=1)
    maxPages: int = Field(default=15, ge=1, le=100)


class FormPlanRequest(BaseModel):
    url: str = Field(..., min_length=1)


class TestFormsRequest(BaseModel):
    formPages: list[dict[str, Any]]
    customPlan: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def build_router(services: FlowServices) -> APIRouter:
    router = APIRouter()

    @router.post("/intelligent-crawl")
    async def intelligent_crawl(body: CrawlRequest) -> dict[str, Any]:
        logger.info("Crawl requested: %s (depth=%d, pages=%d)", body.url, body.maxDepth, body.maxPages)
        result = await services.crawl(body.url, max_depth=body.maxDepth, max_pages=body.maxPages)
        return result.to_dict()

    @router.post("/detect-forms")
    async def detect_forms(body: CrawlDataRequest) -> dict[str, Any]:
        crawl = CrawlResult.from_dict(body.crawlData)
        detection = await services.detect_forms(crawl)
        return detection.to_dict()

    @router.post("/detect-workflows")
    async def detect_workflows(body: CrawlDataRequest) -> dict[str, Any]:
        crawl = CrawlResult.from_dict(body.crawlData)
        return services.detect_workflows(crawl).to_dict()

    @router.post("/generate-workflows")
    async def generate_workflows(body: GenerateRequest) -> dict[str, Any]:
        graph = WorkflowGraph.from_dict(body.detection)
        workflows = await services.generate_workflows(graph)
        return {"total": len(workflows), "workflows": [w.to_dict() for w in workflows]}

    @router.post("/execute-workflows")
    async def execute_workflows(body: ExecuteManyRequest) -> dict[str, Any]:
        if not body.workflows:
            raise ValueError("Missing workflows array")
        workflows = [DetectedWorkflow.from_dict(w) for w in body.workflows]
        batch = await services.execute_workflows(workflows)
        return batch.to_dict()

    @router.post("/execute-workflow")
    async def execute_workflow(body: ExecuteRequest) -> dict[str, Any]:
        steps = steps_from_list(body.steps)
        result = await services.execute_workflow(body.pageUrl or body.url, steps)
        return result.to_dict()

    @router.post("/discover-workflows")
    async def discover_workflows(body: DiscoverRequest) -> dict[str, Any]:
        result = await services.discover(body.url, max_pages=body.maxPages)
        return result.to_dict()

    @router.post("/get-form-plan")
    async def get_form_plan(body: FormPlanRequest) -> dict[str, Any]:
        return await services.get_form_plan(body.url)

    @router.post("/test-forms")
    async def test_forms(body: TestFormsRequest) -> dict[str, Any]:
        if not body.formPages:
            raise ValueError("Missing formPages array")
        pages = [FormPage.from_dict(p) for p in body.formPages]
        custom = FillPlan.from_dict(body.customPlan) if body.customPlan else None
        report = await services.test_forms(pages, custom)
        return report.to_dict()

    return router


def create_app(settings: Optional[Settings] = None, services: Optional[FlowServices] = None) -> FastAPI:
    """Build the application; pass *services* to swap in test doubles."""
    settings = settings or Settings.from_env()
    services = services or FlowServices(settings)

    app = FastAPI(title="FlowScout", description="Website workflow discovery and verification")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return _error(400, f"{field}: {message}" if field else message)

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(Exception)
    async def _server_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(500, str(exc) or exc.__class__.__name__)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "planner": "groq" if settings.has_llm else "heuristic"}

    router = build_router(services)
    app.include_router(router)
    app.include_router(router, prefix="/api")
    return app
