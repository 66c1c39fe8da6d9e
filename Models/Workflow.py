"""
Models/Workflow.py — Workflow graph, step, plan and execution records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

#: Step actions understood by the executor.
STEP_ACTIONS: frozenset[str] = frozenset(
    {"fill", "select", "click", "navigate", "assert", "submit"}
)

#: Actions that interact with a form element (as opposed to navigation / checks).
ACTIONABLE_STEPS: frozenset[str] = frozenset({"fill", "select", "click", "submit"})

WORKFLOW_TYPES: frozenset[str] = frozenset(
    {"checkout", "login", "registration", "contact", "search", "newsletter", "booking", "other"}
)

VERDICTS: frozenset[str] = frozenset({"passed", "failed", "inconclusive", "cancelled"})


# ---------------------------------------------------------------------------
# Steps and workflows
# ---------------------------------------------------------------------------


@dataclass
class WorkflowStep:
    """One ordered action of a workflow."""

    index: int
    """Position within the workflow, strictly increasing from zero."""

    action: str
    """One of :data:`STEP_ACTIONS`."""

    selector: str = ""
    """Target element; comma-separated alternatives are tried in order."""

    value: str = ""
    """Fill / select value, navigation URL or text to assert."""

    description: str = ""

    skip: bool = False
    """Caller asked for this step to be left out of the run."""

    optional: bool = False
    """An absent target is not an error for optional steps."""

    status: str = "pending"
    """``pending``, ``success`` or ``error``."""

    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "action": self.action,
            "selector": self.selector,
            "value": self.value,
            "description": self.description,
            "status": self.status,
            "error": self.error,
        }
        if self.skip:
            data["skip"] = True
        if self.optional:
            data["optional"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: Optional[int] = None) -> WorkflowStep:
        if not isinstance(data, dict):
            raise ValueError("Workflow step must be an object")
        action = str(data.get("action") or "").lower()
        if action not in STEP_ACTIONS:
            raise ValueError(f"Unsupported action: {data.get('action')}")
        if index is None:
            index = int(data.get("index") or 0)
        value = data.get("value")
        return cls(
            index=index,
            action=action,
            selector=str(data.get("selector") or ""),
            value="" if value is None else str(value),
            description=str(data.get("description") or ""),
            skip=bool(data.get("skip")),
            optional=bool(data.get("optional")),
            status=str(data.get("status") or "pending"),
            error=data.get("error") or None,
        )


def steps_from_list(raw: Any) -> list[WorkflowStep]:
    """Decode a JSON step list, renumbering indices from zero in list order."""
    if not isinstance(raw, list) or not raw:
        raise ValueError("Missing workflow steps")
    return [WorkflowStep.from_dict(s, index=i) for i, s in enumerate(raw)]


@dataclass
class DetectedWorkflow:
    """A workflow opportunity with its executable steps."""

    id: str
    type: str
    name: str
    confidence: int = 0
    """0–100."""

    available: bool = True
    reason: str = ""
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    steps: list[WorkflowStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "confidence": self.confidence,
            "available": self.available,
            "reason": self.reason,
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DetectedWorkflow:
        if not isinstance(data, dict):
            raise ValueError("Workflow must be an object")
        wf_type = str(data.get("type") or "other")
        return cls(
            id=str(data.get("id") or wf_type),
            type=wf_type if wf_type in WORKFLOW_TYPES else "other",
            name=str(data.get("name") or data.get("goal") or wf_type),
            confidence=int(data.get("confidence") or 0),
            available=bool(data.get("available", True)),
            reason=str(data.get("reason") or ""),
            page_url=data.get("pageUrl") or data.get("url") or None,
            page_title=data.get("pageTitle") or None,
            steps=steps_from_list(data["steps"]) if data.get("steps") else [],
        )


@dataclass
class WorkflowExecutionResult:
    """Verdict of one workflow run."""

    status: str
    """``passed``, ``failed``, ``inconclusive`` or ``cancelled``."""

    confidence: float = 0.0
    """0–1, from whichever signal produced the verdict."""

    reason: str = ""
    steps: list[WorkflowStep] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "confidence": round(self.confidence, 2),
            "reason": self.reason,
            "steps": [s.to_dict() for s in self.steps],
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass
class WorkflowNode:
    """A crawled page viewed as a graph node."""

    id: str
    url: str
    title: str = ""
    mode: str = "static"

    intents: list[tuple[str, int]] = field(default_factory=list)
    """``(intent, count)`` pairs, most frequent first."""

    link_count: int = 0
    forms: int = 0
    inputs: int = 0
    buttons: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "mode": self.mode,
            "intents": [{"intent": i, "count": c} for i, c in self.intents],
            "linkCount": self.link_count,
            "forms": self.forms,
            "inputs": self.inputs,
            "buttons": self.buttons,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowNode:
        if not isinstance(data, dict) or not (data.get("id") or data.get("url")):
            raise ValueError("Graph node must carry an id")
        intents = []
        for entry in data.get("intents") or ():
            if isinstance(entry, dict) and entry.get("intent"):
                intents.append((str(entry["intent"]), int(entry.get("count") or 0)))
        return cls(
            id=str(data.get("id") or data["url"]),
            url=str(data.get("url") or data["id"]),
            title=str(data.get("title") or ""),
            mode=str(data.get("mode") or "static"),
            intents=intents,
            link_count=int(data.get("linkCount") or 0),
            forms=int(data.get("forms") or 0),
            inputs=int(data.get("inputs") or 0),
            buttons=int(data.get("buttons") or 0),
        )


@dataclass
class WorkflowEdge:
    """A navigation link between two crawled pages."""

    source: str
    target: str
    source_title: str = ""
    target_title: str = ""
    intent: str = "navigate"
    action: str = "navigate"
    reason: str = "link"

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.source,
            "to": self.target,
            "fromTitle": self.source_title,
            "toTitle": self.target_title,
            "intent": self.intent,
            "action": self.action,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowEdge:
        return cls(
            source=str(data["from"]),
            target=str(data["to"]),
            source_title=str(data.get("fromTitle") or ""),
            target_title=str(data.get("toTitle") or ""),
            intent=str(data.get("intent") or "navigate"),
            action=str(data.get("action") or "navigate"),
            reason=str(data.get("reason") or "link"),
        )


@dataclass
class WorkflowGraph:
    """Page-level navigation graph derived from a crawl."""

    nodes: list[WorkflowNode] = field(default_factory=list)
    edges: list[WorkflowEdge] = field(default_factory=list)

    graph: dict[str, list[dict[str, str]]] = field(default_factory=dict)
    """Adjacency view: node id to its outbound ``{to, intent, action}`` entries."""

    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        return len(self.nodes)

    @property
    def total_edges(self) -> int:
        return len(self.edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPages": self.total_pages,
            "totalEdges": self.total_edges,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "graph": self.graph,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowGraph:
        if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
            raise ValueError("Missing graph nodes")
        nodes = [WorkflowNode.from_dict(n) for n in data["nodes"]]
        ids = {n.id for n in nodes}
        edges = [
            WorkflowEdge.from_dict(e)
            for e in data.get("edges") or ()
            if isinstance(e, dict) and e.get("from") in ids and e.get("to") in ids
        ]
        graph = data.get("graph")
        if not isinstance(graph, dict):
            graph = {n.id: [] for n in nodes}
            for edge in edges:
                graph[edge.source].append(
                    {"to": edge.target, "intent": edge.intent, "action": edge.action}
                )
        return cls(nodes=nodes, edges=edges, graph=graph, summary=dict(data.get("summary") or {}))


# ---------------------------------------------------------------------------
# Planner records
# ---------------------------------------------------------------------------


@dataclass
class FillAction:
    """One planned field interaction."""

    selector: str
    value: str = ""
    description: str = ""

    action: str = "fill"
    """``fill``, ``select`` or ``click`` (checkboxes and radios)."""

    skip: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "selector": self.selector,
            "value": self.value,
            "description": self.description,
            "action": self.action,
        }
        if self.skip:
            data["skip"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FillAction:
        if not isinstance(data, dict) or not data.get("selector"):
            raise ValueError("Fill action must carry a selector")
        action = str(data.get("action") or "fill").lower()
        value = data.get("value")
        return cls(
            selector=str(data["selector"]),
            value="" if value is None else str(value),
            description=str(data.get("description") or ""),
            action=action if action in {"select", "click"} else "fill",
            skip=bool(data.get("skip")),
        )


@dataclass
class FillPlan:
    """Values and submit target for filling one form."""

    fill_actions: list[FillAction] = field(default_factory=list)
    submit_selector: str = ""
    submit_description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "fillActions": [a.to_dict() for a in self.fill_actions],
            "submitSelector": self.submit_selector,
            "submitDescription": self.submit_description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FillPlan:
        if not isinstance(data, dict) or not isinstance(data.get("fillActions"), list):
            raise ValueError("Plan must carry a fillActions array")
        actions = [
            FillAction.from_dict(a)
            for a in data["fillActions"]
            if isinstance(a, dict) and a.get("selector")
        ]
        return cls(
            fill_actions=actions,
            submit_selector=str(data.get("submitSelector") or ""),
            submit_description=str(data.get("submitDescription") or ""),
        )


@dataclass
class OutcomeAnalysis:
    """Judgement of a page's before/after state following a workflow run."""

    status: str
    """``passed``, ``failed`` or ``inconclusive``."""

    confidence: float = 0.0
    reason: str = ""
    detected_messages: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@dataclass
class DiscoveryResult:
    """Workflows found by a site-wide discovery pass."""

    url: str
    detected_workflows: list[DetectedWorkflow] = field(default_factory=list)

    scanned_pages: list[tuple[str, str]] = field(default_factory=list)
    """``(url, title)`` of every page that was analysed, in scan order."""

    @property
    def summary(self) -> str:
        return (
            f"Found {len(self.detected_workflows)} workflow(s) across "
            f"{len(self.scanned_pages)} pages scanned"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "detectedWorkflows": [w.to_dict() for w in self.detected_workflows],
            "pagesScanned": len(self.scanned_pages),
            "scannedPages": [{"url": u, "title": t} for u, t in self.scanned_pages],
            "summary": self.summary,
        }


@dataclass
class ExecutionBatch:
    """Results of running several workflows one after another."""

    results: list[tuple[DetectedWorkflow, WorkflowExecutionResult]] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        counts = {"total": len(self.results), **dict.fromkeys(sorted(VERDICTS), 0)}
        for _, result in self.results:
            if result.status in VERDICTS:
                counts[result.status] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "stats": self.stats,
            "results": [
                {
                    "id": workflow.id,
                    "type": workflow.type,
                    "name": workflow.name,
                    "pageUrl": workflow.page_url,
                    **result.to_dict(),
                }
                for workflow, result in self.results
            ],
        }
