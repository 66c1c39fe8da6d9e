"""
Fetcher/Signals.py — HTML signal extraction and the application-shell heuristic.

Both fetch paths end up here: the static path parses the raw HTTP body, the
dynamic path parses the DOM serialised by the browser after rendering.  The
parser is BeautifulSoup on top of ``lxml``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from Models import FormButton, FormInput, FormMeta, PageElement

logger = logging.getLogger(__name__)

# Input types that never carry user data
_SKIP_INPUT_TYPES: frozenset[str] = frozenset(
    {"hidden", "submit", "button", "reset", "image", "file"}
)

_BUTTON_INPUT_TYPES: frozenset[str] = frozenset({"submit", "button", "image"})

_SPA_MARKERS = re.compile(
    r"data-reactroot|__NEXT_DATA__|ng-version|id=[\"'](?:app|root)[\"']|__NUXT__|"
    r"webpackJsonp|/assets/index-[a-z0-9]+\.js",
    re.IGNORECASE,
)

_NETWORK_CODE = re.compile(
    r"fetch\s*\(|xmlhttprequest|axios\.|new\s+websocket|navigator\.sendbeacon", re.IGNORECASE
)
_DOM_MUTATION_CODE = re.compile(
    r"innerhtml\s*=|appendchild\s*\(|replacechild\s*\(|insertadjacenthtml\s*\(|mutationobserver",
    re.IGNORECASE,
)
_SIMPLE_ID = re.compile(r"^[A-Za-z][\w-]*$")
_WHITESPACE = re.compile(r"\s+")

MAX_ELEMENTS = 300
TEXT_SAMPLE_LENGTH = 500


# ---------------------------------------------------------------------------
# Intent tagging
# ---------------------------------------------------------------------------


def label_intent(
    tag: str,
    text: str = "",
    el_type: str = "",
    name: str = "",
    placeholder: str = "",
    href: str = "",
) -> str:
    """Return the semantic intent of an interactive element, or ``""``."""
    tag = (tag or "").lower()
    text = (text or "").lower()
    el_type = (el_type or "").lower()
    name = (name or "").lower()
    placeholder = (placeholder or "").lower()
    href = (href or "").lower()

    if re.search(r"login|sign in", text) or re.search(r"login|signin", href):
        return "auth_login"
    if re.search(r"register|sign up", text) or re.search(r"signup|register", href):
        return "auth_signup"
    if re.search(r"logout|sign out", text):
        return "auth_logout"
    if "search" in text or "search" in placeholder or (tag == "input" and el_type == "search"):
        return "search_input"
    if re.search(r"cart|buy|checkout", text) or re.search(r"checkout|cart", href):
        return "purchase_action"
    if re.search(r"contact|support|help", text):
        return "contact_action"
    if tag == "form" and re.search(r"login|sign in", f"{name} {placeholder} {text}"):
        return "auth_login"
    if tag == "button" and re.search(r"submit|next|continue", text):
        return "submit_action"
    return ""


# ---------------------------------------------------------------------------
# Selectors and URLs
# ---------------------------------------------------------------------------


def build_selector(tag: str, name: Optional[str], el_id: Optional[str], idx: int) -> str:
    """Build the most specific CSS selector available for an element."""
    if el_id:
        if _SIMPLE_ID.match(el_id):
            return f"#{el_id}"
        return f"{tag}[id='{el_id}']"
    if name:
        return f"{tag}[name='{name}']"
    return f"{tag}:nth-of-type({idx + 1})"


def absolute_link(base_url: str, href: str) -> str:
    """Resolve *href* against *base_url*; ``""`` for non-http(s) or unparsable links."""
    href = (href or "").strip()
    if not href or href.startswith(("javascript:", "mailto:", "tel:", "data:")):
        return ""
    try:
        parsed = urlparse(urljoin(base_url, href))
    except ValueError:
        return ""
    if parsed.scheme not in {"http", "https"}:
        return ""
    return urlunparse(parsed._replace(fragment=""))


# ---------------------------------------------------------------------------
# Extracted signals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageSignals:
    """Everything a single HTML document tells us, before the page is recorded."""

    url: str
    title: str = ""
    links: tuple[str, ...] = ()
    elements: tuple[PageElement, ...] = ()
    forms: tuple[FormMeta, ...] = ()
    inputs_count: int = 0
    buttons_count: int = 0
    text_length: int = 0
    text_sample: str = ""
    script_count: int = 0

    active_scripts: int = 0
    """Inline scripts that fetch data or mutate the DOM."""

    has_spa_markers: bool = False


@dataclass(frozen=True)
class ShellHeuristic:
    """Decides whether a statically fetched page is a JavaScript application shell.

    The thresholds are tuning knobs, not laws: a page is a shell when it
    carries framework bootstrap markers, when it has almost no visible text
    but ships scripts, or when enough inline scripts fetch data or rewrite
    the DOM.  A tiny page without any script is plain static HTML.
    """

    min_text_length: int = 300
    active_script_threshold: int = 2
    use_spa_markers: bool = True

    def evaluate(self, signals: PageSignals) -> tuple[bool, str]:
        """Return ``(is_shell, rule)`` for *signals*."""
        if self.use_spa_markers and signals.has_spa_markers:
            return True, "spaMarkers"
        if signals.text_length < self.min_text_length and signals.script_count > 0:
            return True, "textTooShort+scripts"
        if signals.active_scripts >= self.active_script_threshold:
            return True, "hasDynamicScripts"
        return False, "sufficientStaticContent"

    def is_shell(self, signals: PageSignals) -> bool:
        return self.evaluate(signals)[0]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_html(html: str, url: str) -> PageSignals:
    """Extract title, links, forms, elements and text volume from *html*."""
    soup = BeautifulSoup(html or "", "lxml")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    scripts = soup.find_all("script")
    active = 0
    for script in scripts:
        if script.get("src"):
            continue
        code = script.string or script.get_text() or ""
        if _NETWORK_CODE.search(code) or _DOM_MUTATION_CODE.search(code):
            active += 1

    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        link = absolute_link(url, anchor["href"])
        if link and link not in seen:
            seen.add(link)
            links.append(link)

    forms = tuple(_extract_form(form, idx, url) for idx, form in enumerate(soup.find_all("form")))
    elements = _extract_elements(soup)
    inputs_count = len(soup.find_all("input")) + len(soup.find_all(["textarea", "select"]))
    buttons_count = len(soup.find_all("button"))

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    text = _WHITESPACE.sub(" ", body.get_text(" ", strip=True)).strip()

    return PageSignals(
        url=url,
        title=title,
        links=tuple(links),
        elements=elements,
        forms=forms,
        inputs_count=inputs_count,
        buttons_count=buttons_count,
        text_length=len(text),
        text_sample=text[:TEXT_SAMPLE_LENGTH],
        script_count=len(scripts),
        active_scripts=active,
        has_spa_markers=bool(_SPA_MARKERS.search(html or "")),
    )


def _element_text(el: Tag) -> str:
    text = el.get_text(" ", strip=True) or el.get("aria-label") or el.get("alt") or ""
    if not text and el.name == "input":
        text = el.get("value") or ""
    return _WHITESPACE.sub(" ", str(text)).strip()[:100]


def _extract_elements(soup: BeautifulSoup) -> tuple[PageElement, ...]:
    elements: list[PageElement] = []
    counters: dict[str, int] = {}
    for el in soup.select("a, button, input, form, select, textarea"):
        if len(elements) >= MAX_ELEMENTS:
            break
        tag = el.name
        idx = counters.get(tag, 0)
        counters[tag] = idx + 1
        el_type = str(el.get("type") or "").lower()
        if tag == "input" and el_type == "hidden":
            continue
        text = _element_text(el)
        name = str(el.get("name") or "")
        placeholder = str(el.get("placeholder") or "")
        href = str(el.get("href") or "")
        elements.append(
            PageElement(
                tag=tag,
                text=text,
                type=el_type,
                name=name,
                placeholder=placeholder,
                href=href,
                selector=build_selector(tag, name, el.get("id"), idx),
                intent=label_intent(tag, text, el_type, name, placeholder, href),
            )
        )
    return tuple(elements)


def _extract_form(form: Tag, form_idx: int, page_url: str) -> FormMeta:
    form_id = form.get("id")
    if form_id and _SIMPLE_ID.match(form_id):
        form_sel = f"#{form_id}"
    else:
        form_sel = f"form:nth-of-type({form_idx + 1})"

    inputs: list[FormInput] = []
    counters: dict[str, int] = {}
    for el in form.find_all(["input", "textarea", "select"]):
        tag = el.name
        idx = counters.get(tag, 0)
        counters[tag] = idx + 1
        itype = str(el.get("type") or "text").lower() if tag == "input" else tag
        if itype in _SKIP_INPUT_TYPES or el.has_attr("disabled"):
            continue
        name = str(el.get("name") or "")
        el_id = str(el.get("id") or "")
        selector = build_selector(tag, name, el_id, idx)
        if not el_id and not name:
            selector = f"{form_sel} {selector}"
        options: tuple[str, ...] = ()
        if tag == "select":
            options = tuple(
                str(o.get("value") if o.has_attr("value") else o.get_text(strip=True))
                for o in el.find_all("option")
            )
        inputs.append(
            FormInput(
                name=name,
                id=el_id,
                placeholder=str(el.get("placeholder") or ""),
                type=itype,
                selector=selector,
                options=options,
            )
        )

    buttons: list[FormButton] = []
    for idx, btn in enumerate(form.find_all("button")):
        btn_id = btn.get("id")
        if btn_id or btn.get("name"):
            selector = build_selector("button", btn.get("name"), btn_id, idx)
        else:
            selector = f"{form_sel} button:nth-of-type({idx + 1})"
        buttons.append(
            FormButton(
                text=_element_text(btn),
                selector=selector,
                type=str(btn.get("type") or "submit").lower(),
            )
        )
    for btn in form.find_all("input"):
        btype = str(btn.get("type") or "").lower()
        if btype not in _BUTTON_INPUT_TYPES:
            continue
        if btn.get("id") or btn.get("name"):
            selector = build_selector("input", btn.get("name"), btn.get("id"), 0)
        else:
            selector = f"{form_sel} input[type='{btype}']"
        buttons.append(
            FormButton(text=str(btn.get("value") or ""), selector=selector, type=btype)
        )

    action = form.get("action")
    return FormMeta(
        action=absolute_link(page_url, action) if action else "",
        method=str(form.get("method") or "GET").upper(),
        inputs=tuple(inputs),
        buttons=tuple(buttons),
        selector=form_sel,
    )
