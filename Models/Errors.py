"""
Models/Errors.py — Exception taxonomy shared by every pipeline stage.

None of these are allowed to escape a stage boundary: the crawler turns a
:class:`FetchError` into an ``error``-mode page, the canonicalizer keeps a
form when a :class:`ClassifierError` is raised, and the executor records a
:class:`SelectorNotFound` as a failed step.
"""
from __future__ import annotations

from typing import Optional


class FlowError(Exception):
    """Base class for all pipeline errors."""


class FetchError(FlowError):
    """Network, timeout or parse failure while loading a single page."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.message = message


class ClassifierError(FlowError):
    """The external form-intelligence collaborator failed or returned garbage."""


class SelectorNotFound(FlowError):
    """An execution step's target element is not present on the page."""

    def __init__(self, selector: str, detail: Optional[str] = None) -> None:
        message = f"Selector not found: {selector}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.selector = selector
