"""
Models/Forms.py — Output records of the form canonicalizer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .Crawl import FormMeta


@dataclass
class FormPage:
    """A page that kept at least one transactional form after deduplication."""

    url: str
    title: str = ""

    forms: int = 0
    """Number of kept transactional forms."""

    inputs: int = 0
    """Inputs across the kept forms only."""

    buttons: int = 0
    """Buttons across the kept forms only."""

    has_search: bool = False
    has_newsletter: bool = False

    forms_meta: list[FormMeta] = field(default_factory=list)
    """The kept forms, so a workflow can be assembled from the originating form."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "forms": self.forms,
            "inputs": self.inputs,
            "buttons": self.buttons,
            "hasSearch": self.has_search,
            "hasNewsletter": self.has_newsletter,
            "formsMeta": [f.to_dict() for f in self.forms_meta],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormPage:
        if not isinstance(data, dict) or not data.get("url"):
            raise ValueError("Form page must be an object with a url")
        return cls(
            url=str(data["url"]),
            title=str(data.get("title") or ""),
            forms=int(data.get("forms") or 0),
            inputs=int(data.get("inputs") or 0),
            buttons=int(data.get("buttons") or 0),
            has_search=bool(data.get("hasSearch")),
            has_newsletter=bool(data.get("hasNewsletter")),
            forms_meta=[FormMeta.from_dict(f) for f in data.get("formsMeta") or ()],
        )


@dataclass
class FormDetection:
    """Result of one canonicalization run."""

    total_pages: int
    pages_with_forms: int
    form_pages: list[FormPage] = field(default_factory=list)

    filtered_forms: int = 0
    """Forms discarded at any step of the run."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPages": self.total_pages,
            "pagesWithForms": self.pages_with_forms,
            "formPages": [p.to_dict() for p in self.form_pages],
            "filteredForms": self.filtered_forms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormDetection:
        if not isinstance(data, dict) or not isinstance(data.get("formPages"), list):
            raise ValueError("Missing formPages array")
        pages = [FormPage.from_dict(p) for p in data["formPages"]]
        return cls(
            total_pages=int(data.get("totalPages") or len(pages)),
            pages_with_forms=int(data.get("pagesWithForms") or len(pages)),
            form_pages=pages,
            filtered_forms=int(data.get("filteredForms") or 0),
        )
