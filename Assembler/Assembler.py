"""
Assembler/Assembler.py — Turns form plans and graph paths into ordered steps.

Every list returned here is numbered from zero with no gaps, and never
contains a step the caller marked as skipped.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Optional

from Models import (
    DetectedWorkflow,
    FillPlan,
    FormMeta,
    FormPage,
    WorkflowGraph,
    WorkflowStep,
)
from Planner import FALLBACK_SUBMIT_SELECTOR, choose_submit

logger = logging.getLogger(__name__)

#: Per-edge coverage workflows are capped at this many.
MAX_EDGE_WORKFLOWS = 30


def renumber(steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    """Drop skipped steps and reindex the survivors from zero, keeping order."""
    kept = [s for s in steps if not s.skip]
    for i, step in enumerate(kept):
        step.index = i
    return kept


def apply_custom_plan(plan: FillPlan, custom: Optional[FillPlan]) -> FillPlan:
    """Overlay a caller-edited plan on *plan*.

    The caller's fill actions replace the planned ones in the caller's order,
    minus the ones marked ``skip``.  A missing submit selector falls back to
    the planned one.
    """
    if custom is None:
        return plan
    actions = [a for a in custom.fill_actions if not a.skip]
    return FillPlan(
        fill_actions=actions,
        submit_selector=custom.submit_selector or plan.submit_selector,
        submit_description=custom.submit_description or plan.submit_description,
    )


class WorkflowAssembler:
    """Builds executable :class:`~Models.WorkflowStep` lists."""

    def assemble_form_workflow(
        self,
        form_page: FormPage,
        form_meta: FormMeta,
        plan: FillPlan,
        submit: bool = True,
    ) -> list[WorkflowStep]:
        """One step per planned field, then a terminal click on the submit target."""
        select_selectors = {i.selector for i in form_meta.inputs if i.type == "select"}
        steps: list[WorkflowStep] = []
        for action in plan.fill_actions:
            kind = action.action
            if action.selector in select_selectors:
                kind = "select"
            steps.append(
                WorkflowStep(
                    index=len(steps),
                    action=kind,
                    selector=action.selector,
                    value=action.value if kind != "click" else "",
                    description=action.description or f"{kind.capitalize()} {action.selector}",
                    skip=action.skip,
                    # checkboxes and radios are often decorative
                    optional=kind == "click",
                )
            )

        if submit:
            submit_selector = plan.submit_selector
            description = plan.submit_description
            if not submit_selector:
                button = choose_submit(form_meta)
                submit_selector = button.selector if button else FALLBACK_SUBMIT_SELECTOR
                description = f"Click '{button.text}'" if button and button.text else ""
            steps.append(
                WorkflowStep(
                    index=len(steps),
                    action="click",
                    selector=submit_selector,
                    description=description or "Submit the form",
                )
            )

        steps = renumber(steps)
        logger.debug("Assembled %d steps for form on %s", len(steps), form_page.url)
        return steps

    # ------------------------------------------------------------------
    # Coverage workflows
    # ------------------------------------------------------------------

    def build_coverage_workflows(self, graph: WorkflowGraph) -> list[DetectedWorkflow]:
        """A breadth-first tour of every page plus one two-step workflow per edge."""
        if not graph.nodes:
            return []

        titles = {node.id: node.title or node.url for node in graph.nodes}
        start = graph.nodes[0].id
        order: list[str] = []
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            order.append(current)
            for entry in graph.graph.get(current, ()):
                target = entry["to"]
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        # unreachable nodes still get visited, in crawl order
        order.extend(node.id for node in graph.nodes if node.id not in seen)

        workflows = [
            DetectedWorkflow(
                id="coverage-all-pages",
                type="other",
                name="Visit every discovered page",
                confidence=100,
                reason=f"Breadth-first tour of {len(order)} page(s)",
                page_url=start,
                page_title=titles[start],
                steps=[
                    WorkflowStep(
                        index=i,
                        action="navigate",
                        value=url,
                        description=f"Open {titles[url]}",
                    )
                    for i, url in enumerate(order)
                ],
            )
        ]

        for n, edge in enumerate(graph.edges[:MAX_EDGE_WORKFLOWS]):
            workflows.append(
                DetectedWorkflow(
                    id=f"edge-{n}",
                    type="other",
                    name=f"{edge.source_title or edge.source} -> {edge.target_title or edge.target}",
                    confidence=80,
                    reason=f"Link with intent '{edge.intent}'",
                    page_url=edge.source,
                    page_title=edge.source_title,
                    steps=[
                        WorkflowStep(
                            index=0,
                            action="navigate",
                            value=edge.source,
                            description=f"Open {edge.source_title or edge.source}",
                        ),
                        WorkflowStep(
                            index=1,
                            action="navigate",
                            value=edge.target,
                            description=f"Follow link to {edge.target_title or edge.target}",
                        ),
                    ],
                )
            )

        logger.info("Generated %d coverage workflow(s)", len(workflows))
        return workflows
