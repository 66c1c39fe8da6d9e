"""
Canonicalizer/Canonicalizer.py — Form deduplication and classification.

Reduces every form observed during a crawl to one representative per
(category, structural signature).  Site-search boxes and newsletter signups
that repeat in every header or footer are kept once each; structural
duplicates are dropped; everything else is put to the intent classifier.

All dedup state lives in a :class:`DedupContext` created per run, and forms
are decided strictly one after another, so the outcome never depends on
classifier latency.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from Crawler import normalize_url
from Models import (
    CrawlPage,
    CrawlResult,
    DetailedForms,
    FormDetection,
    FormInput,
    FormMeta,
    FormPage,
    SummaryOnly,
)
from Planner import NON_TRANSACTIONAL, TRANSACTIONAL, UNKNOWN, FormIntelligence

logger = logging.getLogger(__name__)

SEARCH = "search"
NEWSLETTER = "newsletter"
OTHER = "other"

_EMAIL_FIELD = re.compile(r"e-?mail|mail")
_MESSAGE_FIELD = re.compile(r"subject|message")


@dataclass
class DedupContext:
    """Mutable dedup state for a single canonicalization run."""

    search_kept: bool = False
    newsletter_kept: bool = False
    seen_signatures: set[str] = field(default_factory=set)

    filtered: int = 0
    """Forms discarded so far, at any step."""


@dataclass(frozen=True)
class FormDecision:
    keep: bool
    category: str
    reason: str = ""


# ---------------------------------------------------------------------------
# Structural tests
# ---------------------------------------------------------------------------


def _identifiers(inp: FormInput) -> tuple[str, ...]:
    return tuple(v.strip().lower() for v in (inp.name, inp.id, inp.placeholder) if v and v.strip())


def is_search_form(form: FormMeta) -> bool:
    """1–3 inputs, one of which is a search box (``q``, ``*search*``, ``*query*``)."""
    if not 1 <= len(form.inputs) <= 3:
        return False
    for inp in form.inputs:
        if inp.type == "search":
            return True
        for ident in _identifiers(inp):
            if ident == "q" or "search" in ident or "query" in ident:
                return True
    return False


def is_newsletter_form(form: FormMeta) -> bool:
    """An email field, no message body, and at most two distinct fields."""
    if not form.inputs:
        return False
    has_email = False
    distinct: set[str] = set()
    for inp in form.inputs:
        if inp.type == "textarea":
            return False
        idents = _identifiers(inp)
        if any(_MESSAGE_FIELD.search(i) for i in idents):
            return False
        if inp.type == "email" or any(_EMAIL_FIELD.search(i) for i in idents):
            has_email = True
        distinct.add(idents[0] if idents else inp.selector or inp.type)
    return has_email and len(distinct) <= 2


def form_category(form: FormMeta) -> str:
    if is_search_form(form):
        return SEARCH
    if is_newsletter_form(form):
        return NEWSLETTER
    return OTHER


def form_signature(form: FormMeta, category: Optional[str] = None) -> str:
    """Structural key of *form*.

    Search and newsletter signatures ignore the action URL so the same
    header widget dedups across paths; every other form is keyed on its
    action as well.
    """
    category = category or form_category(form)
    parts = []
    for inp in form.inputs:
        part = "|".join(
            (inp.name.strip().lower(), inp.id.strip().lower(), inp.placeholder.strip().lower(), inp.type)
        )
        if inp.selector:
            part = f"{part}@{inp.selector}"
        parts.append(part)
    body = ";".join(sorted(parts))
    if category in (SEARCH, NEWSLETTER):
        return f"{category}::{body}"
    action = normalize_url(form.action) if form.action else ""
    return f"{action}::{body}"


# ---------------------------------------------------------------------------
# Canonicalizer
# ---------------------------------------------------------------------------


class FormCanonicalizer:
    """Turns a :class:`~Models.CrawlResult` into deduplicated form pages.

    The *classifier* is consulted only for forms whose category the
    structural tests could not settle.  A failing classifier is retried
    *classifier_retries* times and the form is then kept.
    """

    def __init__(self, classifier: FormIntelligence, classifier_retries: int = 1) -> None:
        self.classifier = classifier
        self.classifier_retries = max(0, classifier_retries)

    async def detect(self, crawl: CrawlResult) -> FormDetection:
        """Run one canonicalization pass with fresh dedup state."""
        ctx = DedupContext()
        form_pages: list[FormPage] = []
        pages_with_forms = 0

        for page in crawl.results:
            if page.mode == "error" or page.forms_count == 0:
                continue
            pages_with_forms += 1

            if isinstance(page.forms, SummaryOnly):
                # No structure to dedup on; keep the page as recorded
                form_pages.append(
                    FormPage(
                        url=page.url,
                        title=page.title,
                        forms=page.forms.forms,
                        inputs=page.forms.inputs,
                        buttons=page.forms.buttons,
                    )
                )
                continue

            form_page = await self._process_page(page, page.forms, ctx)
            if form_page is not None:
                form_pages.append(form_page)

        logger.info(
            "Form detection: %d of %d pages kept, %d forms filtered",
            len(form_pages),
            pages_with_forms,
            ctx.filtered,
        )
        return FormDetection(
            total_pages=crawl.total_pages,
            pages_with_forms=pages_with_forms,
            form_pages=form_pages,
            filtered_forms=ctx.filtered,
        )

    async def _process_page(
        self, page: CrawlPage, forms: DetailedForms, ctx: DedupContext
    ) -> Optional[FormPage]:
        kept: list[FormMeta] = []
        has_search = has_newsletter = False

        for form in forms.forms:
            decision = await self.decide(form, ctx, page.url)
            logger.debug(
                "Form %s on %s: %s (%s)",
                form.selector or form.action,
                page.url,
                "kept" if decision.keep else "dropped",
                decision.reason,
            )
            if not decision.keep:
                continue
            kept.append(form)
            has_search = has_search or decision.category == SEARCH
            has_newsletter = has_newsletter or decision.category == NEWSLETTER

        if not kept:
            return None
        return FormPage(
            url=page.url,
            title=page.title,
            forms=len(kept),
            inputs=sum(len(f.inputs) for f in kept),
            buttons=sum(len(f.buttons) for f in kept),
            has_search=has_search,
            has_newsletter=has_newsletter,
            forms_meta=kept,
        )

    async def decide(self, form: FormMeta, ctx: DedupContext, page_url: str = "") -> FormDecision:
        """Decide whether *form* is kept, updating *ctx*."""
        category = form_category(form)
        signature = form_signature(form, category)

        if signature in ctx.seen_signatures:
            ctx.filtered += 1
            return FormDecision(False, category, "duplicate signature")
        ctx.seen_signatures.add(signature)

        if category == SEARCH:
            if ctx.search_kept:
                ctx.filtered += 1
                return FormDecision(False, category, "search form already kept")
            ctx.search_kept = True
            return FormDecision(True, category, "search form")

        if category == NEWSLETTER:
            if ctx.newsletter_kept:
                ctx.filtered += 1
                return FormDecision(False, category, "newsletter form already kept")
            ctx.newsletter_kept = True

        intent = await self._classify(form, page_url)
        if intent in (TRANSACTIONAL, UNKNOWN):
            return FormDecision(True, category, f"classified {intent}")
        ctx.filtered += 1
        return FormDecision(False, category, f"classified {intent}")

    async def _classify(self, form: FormMeta, page_url: str) -> str:
        """Ask the classifier; after the last failed attempt the form counts as unknown."""
        attempts = self.classifier_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                intent = await self.classifier.classify_form_intent(form, page_url)
                return intent if intent in (TRANSACTIONAL, NON_TRANSACTIONAL, UNKNOWN) else UNKNOWN
            except Exception as exc:
                logger.warning(
                    "Intent classifier failed for form on %s (attempt %d/%d): %s",
                    page_url,
                    attempt,
                    attempts,
                    exc,
                )
        logger.warning("Keeping form on %s after classifier failures", page_url)
        return UNKNOWN
