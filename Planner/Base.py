"""
Planner/Base.py — The narrow interface the pipeline uses for form intelligence.

The canonicalizer, assembler and executor only ever talk to a
:class:`FormIntelligence`; whether it is backed by a language model or by
deterministic rules is decided by whoever builds the pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from Models import DetectedWorkflow, FillPlan, FormMeta, OutcomeAnalysis, WorkflowGraph

TRANSACTIONAL = "transactional"
NON_TRANSACTIONAL = "non_transactional"
UNKNOWN = "unknown"

INTENTS: frozenset[str] = frozenset({TRANSACTIONAL, NON_TRANSACTIONAL, UNKNOWN})


@dataclass(frozen=True)
class PageState:
    """Snapshot of a live page, taken before and after a workflow run."""

    url: str
    text: str = ""


@runtime_checkable
class FormIntelligence(Protocol):
    """Collaborator that classifies forms, plans fills and judges outcomes.

    Implementations raise :class:`~Models.ClassifierError` on failure;
    callers decide how to degrade.
    """

    async def classify_form_intent(self, form: FormMeta, page_url: str = "") -> str:
        """Return one of :data:`INTENTS`."""
        ...

    async def plan_form_fill(
        self, form: FormMeta, page_url: str = "", page_title: str = ""
    ) -> FillPlan:
        """Return the values to type and the submit target for *form*."""
        ...

    async def analyze_outcome(self, before: PageState, after: PageState) -> OutcomeAnalysis:
        """Judge whether a submission succeeded from the page's before/after state."""
        ...

    async def plan_workflows(self, graph: WorkflowGraph) -> list[DetectedWorkflow]:
        """Propose multi-step workflows over *graph* beyond the coverage tour."""
        ...
