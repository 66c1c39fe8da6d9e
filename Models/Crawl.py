"""
Models/Crawl.py — Signal records produced by the fetcher and the site crawler.

Every record is a frozen dataclass: a :class:`CrawlResult` is built once by
the crawler and only read afterwards.  ``to_dict`` / ``from_dict`` use the
camelCase keys of the JSON wire format.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

#: Page modes a :class:`CrawlPage` can carry.
PAGE_MODES: frozenset[str] = frozenset({"static", "dynamic", "error"})


@dataclass(frozen=True)
class PageElement:
    """An interactive element (link, button, input, form, …) found on a page."""

    tag: str
    """Lower-cased tag name."""

    text: str = ""
    """Visible text, ``aria-label`` or ``alt`` of the element."""

    type: str = ""
    name: str = ""
    placeholder: str = ""
    href: str = ""

    selector: str = ""
    """Best-effort CSS selector for the element."""

    intent: str = ""
    """Inferred semantic tag (``auth_login``, ``search_input``, …) or empty."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "text": self.text,
            "type": self.type,
            "name": self.name,
            "placeholder": self.placeholder,
            "href": self.href,
            "selector": self.selector,
            "intent": self.intent or None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PageElement:
        return cls(
            tag=str(data.get("tag") or ""),
            text=str(data.get("text") or ""),
            type=str(data.get("type") or ""),
            name=str(data.get("name") or ""),
            placeholder=str(data.get("placeholder") or ""),
            href=str(data.get("href") or ""),
            selector=str(data.get("selector") or ""),
            intent=str(data.get("intent") or ""),
        )


@dataclass(frozen=True)
class FormInput:
    """Structural description of one form field. Carries no runtime value."""

    name: str = ""
    id: str = ""
    placeholder: str = ""

    type: str = "text"
    """Input type; ``textarea`` and ``select`` for the non-``<input>`` tags."""

    selector: str = ""

    options: tuple[str, ...] = ()
    """Option values, populated for ``select`` fields only."""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "id": self.id,
            "placeholder": self.placeholder,
            "type": self.type,
            "selector": self.selector,
        }
        if self.options:
            data["options"] = list(self.options)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormInput:
        return cls(
            name=str(data.get("name") or ""),
            id=str(data.get("id") or ""),
            placeholder=str(data.get("placeholder") or ""),
            type=str(data.get("type") or "text").lower(),
            selector=str(data.get("selector") or ""),
            options=tuple(str(o) for o in data.get("options") or ()),
        )


@dataclass(frozen=True)
class FormButton:
    """A button (or submit input) belonging to a form."""

    text: str = ""
    selector: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "selector": self.selector, "type": self.type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormButton:
        return cls(
            text=str(data.get("text") or ""),
            selector=str(data.get("selector") or ""),
            type=str(data.get("type") or ""),
        )


@dataclass(frozen=True)
class FormMeta:
    """Structural metadata of a single ``<form>``."""

    action: str = ""
    """Resolved action URL, or empty when the form has none."""

    method: str = "GET"
    inputs: tuple[FormInput, ...] = ()
    buttons: tuple[FormButton, ...] = ()

    selector: str = ""
    """CSS selector of the ``<form>`` element itself."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "method": self.method,
            "selector": self.selector,
            "inputs": [i.to_dict() for i in self.inputs],
            "buttons": [b.to_dict() for b in self.buttons],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormMeta:
        return cls(
            action=str(data.get("action") or ""),
            method=str(data.get("method") or "GET").upper(),
            selector=str(data.get("selector") or ""),
            inputs=tuple(FormInput.from_dict(i) for i in data.get("inputs") or ()),
            buttons=tuple(FormButton.from_dict(b) for b in data.get("buttons") or ()),
        )


# ---------------------------------------------------------------------------
# Forms variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DetailedForms:
    """Forms of a page with full structural metadata."""

    forms: tuple[FormMeta, ...] = ()

    @property
    def count(self) -> int:
        return len(self.forms)


@dataclass(frozen=True)
class SummaryOnly:
    """Raw counts for signal records that carry no structural form metadata."""

    forms: int = 0
    inputs: int = 0
    buttons: int = 0

    @property
    def count(self) -> int:
        return self.forms


PageForms = Union[DetailedForms, SummaryOnly]


# ---------------------------------------------------------------------------
# Page and crawl records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrawlPage:
    """Signal record for one crawled page."""

    url: str
    """Normalised URL; unique within a crawl."""

    title: str = ""

    mode: str = "static"
    """``static``, ``dynamic`` or ``error``."""

    depth: int = 0
    """BFS depth at which the page was discovered."""

    links: tuple[str, ...] = ()
    """Absolute outgoing link URLs, in document order."""

    elements: tuple[PageElement, ...] = ()

    forms: PageForms = field(default_factory=DetailedForms)

    inputs_count: int = 0
    """All inputs on the page, inside or outside forms."""

    buttons_count: int = 0

    text_length: int = 0
    """Length of the visible text."""

    text_sample: str = ""

    error: Optional[str] = None
    """Failure message, set only when :attr:`mode` is ``error``."""

    @property
    def forms_count(self) -> int:
        return self.forms.count

    @property
    def has_form(self) -> bool:
        return self.forms_count > 0

    @classmethod
    def failed(cls, url: str, depth: int, error: str) -> CrawlPage:
        """Return an ``error``-mode page with empty signal fields."""
        return cls(url=url, depth=depth, mode="error", error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "mode": self.mode,
            "depth": self.depth,
            "links": list(self.links),
            "elements": [e.to_dict() for e in self.elements],
            "hasForm": self.has_form,
            "forms": self.forms_count,
            "inputs": self.inputs_count,
            "buttons": self.buttons_count,
            "textLength": self.text_length,
            "textSample": self.text_sample,
        }
        if isinstance(self.forms, DetailedForms):
            data["formsMeta"] = [f.to_dict() for f in self.forms.forms]
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlPage:
        """Decode a page; records without ``formsMeta`` become :class:`SummaryOnly`."""
        if not isinstance(data, dict) or not data.get("url"):
            raise ValueError("Crawl page must be an object with a url")

        raw_forms = data.get("forms")
        form_count = len(raw_forms) if isinstance(raw_forms, list) else int(raw_forms or 0)
        raw_inputs = data.get("inputs")
        input_count = len(raw_inputs) if isinstance(raw_inputs, list) else int(raw_inputs or 0)
        raw_buttons = data.get("buttons")
        button_count = len(raw_buttons) if isinstance(raw_buttons, list) else int(raw_buttons or 0)

        forms: PageForms
        if isinstance(data.get("formsMeta"), list):
            forms = DetailedForms(tuple(FormMeta.from_dict(f) for f in data["formsMeta"]))
        else:
            forms = SummaryOnly(forms=form_count, inputs=input_count, buttons=button_count)

        mode = str(data.get("mode") or "static")
        if mode not in PAGE_MODES:
            # hybrid and other legacy labels were rendered without a browser
            mode = "static"

        return cls(
            url=str(data["url"]),
            title=str(data.get("title") or ""),
            mode=mode,
            depth=int(data.get("depth") or 0),
            links=tuple(str(link) for link in data.get("links") or () if link),
            elements=tuple(PageElement.from_dict(e) for e in data.get("elements") or ()),
            forms=forms,
            inputs_count=input_count,
            buttons_count=button_count,
            text_length=int(data.get("textLength") or data.get("totalTextLength") or 0),
            text_sample=str(data.get("textSample") or ""),
            error=data.get("error") or None,
        )


@dataclass(frozen=True)
class CrawlResult:
    """Ordered output of one crawl (insertion order = visit order)."""

    start_url: str
    results: tuple[CrawlPage, ...] = ()

    status: str = "complete"
    """``complete`` or ``cancelled``; a cancelled result holds partial data."""

    error: Optional[str] = None

    @property
    def total_pages(self) -> int:
        return len(self.results)

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "startUrl": self.start_url,
            "totalPages": self.total_pages,
            "status": self.status,
            "results": [p.to_dict() for p in self.results],
        }
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlResult:
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise ValueError("Missing crawl results")
        results = tuple(CrawlPage.from_dict(p) for p in data["results"])
        start_url = str(data.get("startUrl") or (results[0].url if results else ""))
        return cls(
            start_url=start_url,
            results=results,
            status=str(data.get("status") or "complete"),
            error=data.get("error") or None,
        )


@dataclass(frozen=True)
class CrawlProgress:
    """Progress event emitted by the crawler after each visited page."""

    url: str
    depth: int
    mode: str
    pages_crawled: int
    max_pages: int
