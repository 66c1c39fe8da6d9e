"""
Planner/Groq.py — Form intelligence backed by an OpenAI-compatible chat API.

Talks to Groq's ``/chat/completions`` endpoint by default.  Every failure
(transport error, non-2xx, empty or unparsable answer) is raised as a
:class:`~Models.ClassifierError`; callers decide how to degrade.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import httpx

from Models import (
    VERDICTS,
    ClassifierError,
    DetectedWorkflow,
    FillPlan,
    FormMeta,
    OutcomeAnalysis,
    WorkflowGraph,
    WorkflowStep,
)

from .Base import NON_TRANSACTIONAL, TRANSACTIONAL, UNKNOWN, PageState

logger = logging.getLogger(__name__)

# Context JSON sent alongside a prompt is truncated to this many characters
MAX_CONTEXT_CHARS = 20_000

# Graph slice sent when asking for workflows
MAX_PLAN_NODES = 60
MAX_PLAN_EDGES = 120

# a planner can judge an outcome but never cancel it
_OUTCOME_STATUSES: frozenset[str] = VERDICTS - {"cancelled"}

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_json_safe(text: str) -> Optional[Any]:
    """Parse a model answer that should be JSON but may be wrapped in prose.

    Tries the raw text, then a fenced code block, then the outermost
    ``{...}`` span.  Returns *None* when nothing parses.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    match = _FENCED_JSON.search(text)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except ValueError:
            pass
    match = _BARE_OBJECT.search(text)
    if match:
        try:
            return json.loads(match.group(0))
        except ValueError:
            pass
    return None


_CLASSIFY_PROMPT = """You are classifying an HTML form found while crawling a website.
A form is TRANSACTIONAL when submitting it performs a user workflow: login,
registration, contact, checkout, booking, newsletter signup or search.
It is NON_TRANSACTIONAL when it only filters, sorts or paginates content,
switches language or is otherwise a UI widget.

Respond with one word only: transactional or non_transactional."""

_PLAN_PROMPT = """You are an intelligent form testing assistant. Analyze this form and provide realistic test data to fill it.

Use realistic fake data appropriate for each field:
- email fields: "test@example.com"
- name fields: "John Doe"
- phone fields: "+1 555-123-4567"
- message / textarea: a short realistic message
- password: "TestPass123!"
- select / dropdown: the value "1" or the first available option

Also identify which button submits the form (a submit button, or text like "Send", "Submit", "Contact").

RESPOND WITH ONLY THIS JSON FORMAT (no other text):
{
  "fillActions": [
    { "selector": "CSS_SELECTOR", "value": "VALUE_TO_FILL", "description": "what this field is" }
  ],
  "submitSelector": "CSS_SELECTOR_OF_SUBMIT_BUTTON",
  "submitDescription": "description of submit button"
}"""

_OUTCOME_PROMPT = """You are analyzing the result of a workflow / form submission.

- passed: clear evidence of success (thank you message, confirmation, redirect to a thank-you page)
- failed: error messages, validation failures or explicit failure indicators
- inconclusive: the page looks the same, no clear feedback either way

Be strict: without clear evidence in the new text or a URL change, answer inconclusive.

RESPOND WITH ONLY THIS JSON:
{"status": "passed" | "failed" | "inconclusive", "confidence": 0.0-1.0, "reason": "...", "detectedMessages": ["..."]}"""


_WORKFLOWS_PROMPT = """You are given website detection data: pages (nodes) with their intents,
form/input/button counts and render mode, and the links (edges) between them.
Propose realistic multi-step user workflows over these pages.

- Cover diverse goals: login or signup, form submission where pages have forms,
  search, add-to-cart then checkout, and general navigation.
- Prefer 3-8 steps per workflow and avoid duplicates.
- Only use page URLs that appear in the data.

RESPOND WITH ONLY THIS JSON (no prose):
{"workflows": [{"id": "string", "goal": "string", "steps": [{"page": "url", "action": "string", "note": "optional"}]}]}"""


class GroqIntelligence:
    """:class:`~Planner.Base.FormIntelligence` calling a hosted language model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ValueError("An API key is required for the hosted planner")
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(timeout=timeout)

    # ------------------------------------------------------------------
    # FormIntelligence
    # ------------------------------------------------------------------

    async def classify_form_intent(self, form: FormMeta, page_url: str = "") -> str:
        answer = await self.complete(
            _CLASSIFY_PROMPT,
            {"pageUrl": page_url, "form": form.to_dict()},
            temperature=0.1,
        )
        verdict = answer.strip().lower()
        if verdict.startswith("non") or NON_TRANSACTIONAL in verdict:
            return NON_TRANSACTIONAL
        if TRANSACTIONAL in verdict:
            return TRANSACTIONAL
        logger.debug("Unrecognised intent answer %r, treating as unknown", answer[:80])
        return UNKNOWN

    async def plan_form_fill(
        self, form: FormMeta, page_url: str = "", page_title: str = ""
    ) -> FillPlan:
        answer = await self.complete(
            _PLAN_PROMPT,
            {
                "pageTitle": page_title,
                "url": page_url,
                "inputs": [i.to_dict() for i in form.inputs],
                "buttons": [b.to_dict() for b in form.buttons],
            },
        )
        data = parse_json_safe(answer)
        try:
            plan = FillPlan.from_dict(data)
        except ValueError as exc:
            raise ClassifierError(f"Unusable fill plan: {exc}") from exc
        if not plan.fill_actions:
            raise ClassifierError("Planner returned no fill actions")
        return plan

    async def analyze_outcome(self, before: PageState, after: PageState) -> OutcomeAnalysis:
        before_lines = {line.strip() for line in before.text.splitlines() if len(line.strip()) > 5}
        new_text = "\n".join(
            line.strip()
            for line in after.text.splitlines()
            if len(line.strip()) > 5 and line.strip() not in before_lines
        )[:1000]
        answer = await self.complete(
            _OUTCOME_PROMPT,
            {
                "before": {"url": before.url, "text": before.text[:500]},
                "after": {"url": after.url, "urlChanged": before.url != after.url},
                "newText": new_text or "(No new text detected)",
            },
        )
        data = parse_json_safe(answer)
        if not isinstance(data, dict) or data.get("status") not in _OUTCOME_STATUSES:
            raise ClassifierError("Outcome analysis returned no usable status")
        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        return OutcomeAnalysis(
            status=data["status"],
            confidence=max(0.0, min(1.0, confidence)),
            reason=str(data.get("reason") or ""),
            detected_messages=[str(m) for m in data.get("detectedMessages") or []],
        )

    async def plan_workflows(self, graph: WorkflowGraph) -> list[DetectedWorkflow]:
        """Ask the model for workflows over *graph*.

        Each proposed step becomes a ``navigate`` to the page it names; steps
        without a page are dropped, as are workflows left with no steps.
        """
        answer = await self.complete(
            _WORKFLOWS_PROMPT,
            {
                "nodes": [n.to_dict() for n in graph.nodes[:MAX_PLAN_NODES]],
                "edges": [
                    {"from": e.source, "to": e.target, "intent": e.intent, "action": e.action}
                    for e in graph.edges[:MAX_PLAN_EDGES]
                ],
                "summary": graph.summary,
            },
        )
        data = parse_json_safe(answer)
        if not isinstance(data, dict) or not isinstance(data.get("workflows"), list):
            raise ClassifierError("Workflow planner returned no workflows list")

        workflows = []
        for n, entry in enumerate(data["workflows"]):
            if not isinstance(entry, dict):
                continue
            steps = []
            for raw in entry.get("steps") or ():
                if not isinstance(raw, dict) or not raw.get("page"):
                    continue
                note = str(raw.get("note") or raw.get("action") or "")
                steps.append(
                    WorkflowStep(
                        index=len(steps),
                        action="navigate",
                        value=str(raw["page"]),
                        description=note or f"Open {raw['page']}",
                    )
                )
            if not steps:
                continue
            goal = str(entry.get("goal") or f"Planned workflow {n}")
            workflows.append(
                DetectedWorkflow(
                    id=f"ai-{entry.get('id') or n}",
                    type="other",
                    name=goal,
                    confidence=70,
                    reason="Proposed by the workflow planner",
                    page_url=steps[0].value,
                    steps=steps,
                )
            )
        logger.info("Planner proposed %d workflow(s)", len(workflows))
        return workflows

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def complete(self, prompt: str, context: Any = None, temperature: float = 0.2) -> str:
        """Send *prompt* (plus serialised *context*) and return the answer text."""
        messages = [{"role": "user", "content": prompt}]
        if context is not None:
            serialized = json.dumps(context, default=str)[:MAX_CONTEXT_CHARS]
            messages.append({"role": "user", "content": f"Context:\n{serialized}"})

        try:
            resp = await self._http.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model, "messages": messages, "temperature": temperature},
            )
        except httpx.HTTPError as exc:
            raise ClassifierError(f"Planner request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ClassifierError(f"Planner API error: {resp.status_code} {resp.text[:200]}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ClassifierError("Planner returned a malformed response") from exc
        if not isinstance(content, str) or not content.strip():
            raise ClassifierError("Planner returned an invalid or empty response")
        return content

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

