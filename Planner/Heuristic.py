"""
Planner/Heuristic.py — Deterministic form intelligence.

Used when no language-model key is configured, as the fallback when the
remote planner fails, and as the first-pass outcome signal of the executor.
Every decision is keyed on field semantics (name / id / placeholder / type).
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from Models import (
    DetectedWorkflow,
    FillAction,
    FillPlan,
    FormButton,
    FormInput,
    FormMeta,
    OutcomeAnalysis,
    WorkflowGraph,
)

from .Base import NON_TRANSACTIONAL, TRANSACTIONAL, UNKNOWN, PageState

logger = logging.getLogger(__name__)

FALLBACK_SUBMIT_SELECTOR = 'button[type="submit"], input[type="submit"]'

_SUBMIT_TEXT = re.compile(
    r"submit|send|contact|sign\s*in|log\s*in|sign\s*up|register|subscribe|search|"
    r"continue|checkout|buy|book|reserve|save|go\b",
    re.IGNORECASE,
)
_FILTER_FIELD = re.compile(r"filter|sort|order|price|category|per_?page|page|view|lang", re.IGNORECASE)

_SUCCESS_TEXT = re.compile(
    r"thank\s*you|thanks|success|submitted|received|confirm|subscribed|welcome|"
    r"message (?:has been )?sent|we'?ll be in touch|results? for",
    re.IGNORECASE,
)
_FAILURE_TEXT = re.compile(
    r"\berror\b|invalid|is required|field required|failed|try again|incorrect|"
    r"please enter|please fill|not valid|something went wrong",
    re.IGNORECASE,
)

# (pattern over field key, value, description)
_FIELD_VALUES: tuple[tuple[re.Pattern, str, str], ...] = (
    (re.compile(r"e-?mail|\bmail\b"), "test@example.com", "Email address"),
    (re.compile(r"password|passwd|\bpwd\b"), "TestPass123!", "Password"),
    (re.compile(r"phone|mobile|\btel\b|telephone"), "+1 555-123-4567", "Phone number"),
    (re.compile(r"first.?name|\bfname\b|given"), "John", "First name"),
    (re.compile(r"last.?name|\blname\b|surname|family"), "Doe", "Last name"),
    (re.compile(r"user.?name|login"), "testuser", "Username"),
    (re.compile(r"subject|topic"), "Test inquiry", "Subject"),
    (re.compile(r"message|comment|enquiry|inquiry|question|details|body"),
     "This is an automated test message.", "Message"),
    (re.compile(r"company|organi[sz]ation|business"), "Example Inc", "Company"),
    (re.compile(r"website|\burl\b|homepage"), "https://example.com", "Website"),
    (re.compile(r"zip|postal|postcode"), "10001", "Postal code"),
    (re.compile(r"city|town"), "New York", "City"),
    (re.compile(r"address|street"), "123 Main Street", "Address"),
    (re.compile(r"country"), "United States", "Country"),
    (re.compile(r"search|query|\bq\b|keyword"), "test", "Search query"),
    (re.compile(r"quantity|qty|guests|people|amount"), "1", "Quantity"),
    (re.compile(r"name"), "John Doe", "Full name"),
)

_TYPE_VALUES: dict[str, tuple[str, str]] = {
    "email": ("test@example.com", "Email address"),
    "password": ("TestPass123!", "Password"),
    "tel": ("+1 555-123-4567", "Phone number"),
    "url": ("https://example.com", "Website"),
    "number": ("1", "Number"),
    "date": ("2025-01-15", "Date"),
    "time": ("12:00", "Time"),
    "search": ("test", "Search query"),
    "textarea": ("This is an automated test message.", "Message"),
}


def field_key(inp: FormInput) -> str:
    """Lower-cased identifier soup used for semantic matching."""
    return " ".join(p for p in (inp.name, inp.id, inp.placeholder) if p).lower()


def field_label(inp: FormInput) -> str:
    return inp.name or inp.id or inp.placeholder or inp.type


def value_for_field(inp: FormInput) -> FillAction:
    """Return the planned interaction for one field."""
    label = field_label(inp)
    if inp.type == "select":
        options = [o for o in inp.options if o.strip()]
        return FillAction(
            selector=inp.selector,
            value=options[0] if options else "1",
            description=f"Select {label}",
            action="select",
        )
    if inp.type in {"checkbox", "radio"}:
        return FillAction(selector=inp.selector, description=f"Tick {label}", action="click")

    key = field_key(inp)
    if inp.type in {"email", "password", "tel", "url", "date", "time"}:
        value, description = _TYPE_VALUES[inp.type]
        return FillAction(selector=inp.selector, value=value, description=description)
    for pattern, value, description in _FIELD_VALUES:
        if pattern.search(key):
            return FillAction(selector=inp.selector, value=value, description=description)
    if inp.type in _TYPE_VALUES:
        value, description = _TYPE_VALUES[inp.type]
        return FillAction(selector=inp.selector, value=value, description=description)
    return FillAction(selector=inp.selector, value="Test", description=f"Fill {label}")


def choose_submit(form: FormMeta) -> Optional[FormButton]:
    """Pick the button most likely to submit *form*."""
    for button in form.buttons:
        if button.type == "submit" and button.selector:
            return button
    for button in form.buttons:
        if button.selector and _SUBMIT_TEXT.search(button.text):
            return button
    for button in form.buttons:
        if button.selector:
            return button
    return None


def detect_outcome(before: PageState, after: PageState) -> OutcomeAnalysis:
    """Classify a submission from the text that appeared and the URL change."""
    before_lines = {line.strip() for line in before.text.splitlines() if len(line.strip()) > 5}
    new_lines = [
        line.strip()
        for line in after.text.splitlines()
        if len(line.strip()) > 5 and line.strip() not in before_lines
    ]
    new_text = "\n".join(new_lines)[:1000]
    url_changed = before.url.rstrip("/") != after.url.rstrip("/")

    failures = [line for line in new_lines if _FAILURE_TEXT.search(line)]
    if failures:
        return OutcomeAnalysis(
            status="failed",
            confidence=0.75,
            reason=f"Error message appeared: {failures[0][:120]}",
            detected_messages=failures[:5],
        )
    successes = [line for line in new_lines if _SUCCESS_TEXT.search(line)]
    if successes:
        return OutcomeAnalysis(
            status="passed",
            confidence=0.8,
            reason=f"Success message appeared: {successes[0][:120]}",
            detected_messages=successes[:5],
        )
    if url_changed:
        return OutcomeAnalysis(
            status="passed",
            confidence=0.6,
            reason=f"Page navigated to {after.url}",
        )
    if new_text:
        return OutcomeAnalysis(
            status="inconclusive",
            confidence=0.3,
            reason="New content appeared without a clear success or error message",
        )
    return OutcomeAnalysis(
        status="inconclusive",
        confidence=0.2,
        reason="Page did not change after the workflow",
    )


# ---------------------------------------------------------------------------
# Heuristic intelligence
# ---------------------------------------------------------------------------


class HeuristicIntelligence:
    """Rule-based :class:`~Planner.Base.FormIntelligence`."""

    async def classify_form_intent(self, form: FormMeta, page_url: str = "") -> str:
        if not form.inputs:
            return NON_TRANSACTIONAL
        types = {i.type for i in form.inputs}
        if types & {"password", "email", "tel", "textarea"}:
            return TRANSACTIONAL
        named = [k for k in (field_key(i) for i in form.inputs) if k]
        if types <= {"select", "checkbox", "radio", "range"}:
            return NON_TRANSACTIONAL
        if named and all(_FILTER_FIELD.search(k) for k in named):
            return NON_TRANSACTIONAL
        text_fields = [i for i in form.inputs if i.type not in {"select", "checkbox", "radio", "range"}]
        if len(text_fields) >= 2:
            return TRANSACTIONAL
        return UNKNOWN

    async def plan_form_fill(
        self, form: FormMeta, page_url: str = "", page_title: str = ""
    ) -> FillPlan:
        actions = [value_for_field(i) for i in form.inputs if i.selector]
        submit = choose_submit(form)
        return FillPlan(
            fill_actions=actions,
            submit_selector=submit.selector if submit else FALLBACK_SUBMIT_SELECTOR,
            submit_description=(
                f"Click '{submit.text}'" if submit and submit.text else "Submit the form"
            ),
        )

    async def analyze_outcome(self, before: PageState, after: PageState) -> OutcomeAnalysis:
        return detect_outcome(before, after)

    async def plan_workflows(self, graph: WorkflowGraph) -> list[DetectedWorkflow]:
        # the coverage tour already covers everything the rules can see
        return []
