"""
Assembler/Discovery.py — Site-wide workflow discovery.

Loads the entry page, follows the links whose path or text looks
workflow-related, scores every loaded page against the known workflow
types and keeps the most convincing page per type.  Steps are then built
from templates (newsletter, checkout, search) or from a fill plan for the
page's best matching form.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import urlparse

from Crawler import normalize_url
from Models import (
    CrawlPage,
    DetailedForms,
    DetectedWorkflow,
    DiscoveryResult,
    FetchError,
    FillPlan,
    FormInput,
    FormMeta,
    FormPage,
    WorkflowStep,
)
from Planner import FormIntelligence, HeuristicIntelligence

from .Assembler import WorkflowAssembler

logger = logging.getLogger(__name__)

MAX_RELEVANT_LINKS = 12
AVAILABLE_CONFIDENCE = 40


class Fetcher(Protocol):
    async def fetch(self, url: str, depth: int = 0) -> CrawlPage: ...


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    description: str
    required_indicators: tuple[str, ...]
    form_indicators: tuple[str, ...]


WORKFLOW_DEFINITIONS: dict[str, WorkflowDefinition] = {
    "checkout": WorkflowDefinition(
        "Checkout",
        "Complete a purchase flow",
        ("cart", "add to cart", "buy", "checkout", "purchase", "shop"),
        ("payment", "shipping", "billing", "card number", "cvv", "expiry"),
    ),
    "login": WorkflowDefinition(
        "Login",
        "Sign into an existing account",
        ("login", "sign in", "log in", "email", "username", "password"),
        ("email", "username", "password"),
    ),
    "registration": WorkflowDefinition(
        "Registration",
        "Create a new account",
        ("register", "sign up", "create account", "join", "get started"),
        ("email", "password", "name", "confirm password"),
    ),
    "contact": WorkflowDefinition(
        "Contact",
        "Submit a contact or inquiry form",
        ("contact", "get in touch", "reach us", "message", "inquiry", "feedback"),
        ("name", "email", "message", "subject"),
    ),
    "search": WorkflowDefinition(
        "Search",
        "Search for content or products",
        ("search", "find", "look for", "query"),
        ("search", "query", "keyword"),
    ),
    "newsletter": WorkflowDefinition(
        "Newsletter",
        "Subscribe to email updates",
        ("newsletter", "subscribe", "updates", "mailing list", "stay informed"),
        ("email",),
    ),
    "booking": WorkflowDefinition(
        "Booking",
        "Book or reserve something",
        ("book", "reserve", "schedule", "appointment", "reservation"),
        ("date", "time", "name", "email", "phone"),
    ),
}

WORKFLOW_URL_KEYWORDS: tuple[str, ...] = (
    "login", "signin", "sign-in", "log-in", "auth", "authenticate",
    "register", "signup", "sign-up", "join", "create-account", "get-started",
    "contact", "contact-us", "get-in-touch", "reach-us", "support", "help", "feedback", "inquiry",
    "cart", "checkout", "basket", "shop", "store", "buy", "purchase", "order",
    "subscribe", "newsletter", "updates", "mailing", "email-signup",
    "book", "booking", "reserve", "reservation", "appointment", "schedule",
    "search", "find", "browse",
    "account", "profile", "my-account", "dashboard",
)

_KEPT_TYPES = frozenset({"checkout", "newsletter", "contact", "login", "registration", "cart", "search"})


# ---------------------------------------------------------------------------
# Page profile
# ---------------------------------------------------------------------------


def _ident(inp: FormInput) -> str:
    return " ".join(p for p in (inp.name, inp.id, inp.placeholder) if p).lower()


@dataclass(frozen=True)
class PageProfile:
    """The parts of a crawled page that workflow scoring looks at."""

    url: str
    title: str
    text: str
    """Lower-cased page text, element labels and field identifiers."""

    inputs: tuple[FormInput, ...]
    forms: tuple[FormMeta, ...]
    has_cart: bool
    has_products: bool

    @classmethod
    def from_page(cls, page: CrawlPage) -> PageProfile:
        forms = page.forms.forms if isinstance(page.forms, DetailedForms) else ()
        inputs: list[FormInput] = [i for f in forms for i in f.inputs]
        known = {i.selector for i in inputs}
        for el in page.elements:
            if el.tag not in ("input", "textarea", "select") or el.selector in known:
                continue
            if el.tag == "input" and el.type in ("submit", "button", "reset", "image", "file"):
                continue
            inputs.append(
                FormInput(
                    name=el.name,
                    placeholder=el.placeholder,
                    type=(el.type or "text") if el.tag == "input" else el.tag,
                    selector=el.selector,
                )
            )

        parts = [page.title, page.text_sample]
        parts.extend(el.text for el in page.elements)
        parts.extend(_ident(i) for i in inputs)
        parts.extend(b.text for f in forms for b in f.buttons)
        text = " ".join(p for p in parts if p).lower()

        hrefs = " ".join(el.href for el in page.elements if el.href).lower()
        has_cart = "cart" in text or "basket" in text or "cart" in hrefs
        has_products = any(k in text for k in ("add to cart", "buy now", "add to bag"))
        return cls(
            url=page.url,
            title=page.title,
            text=text,
            inputs=tuple(inputs),
            forms=tuple(forms),
            has_cart=has_cart,
            has_products=has_products,
        )

    def has_password(self) -> bool:
        return any(i.type == "password" for i in self.inputs)

    def has_message_field(self) -> bool:
        return any(
            i.type == "textarea" or "message" in _ident(i) or "subject" in _ident(i)
            for i in self.inputs
        )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Availability:
    available: bool
    confidence: int
    reason: str


def _special_check(workflow_type: str, profile: PageProfile) -> tuple[bool, str]:
    text = profile.text
    inputs = profile.inputs
    if workflow_type == "checkout":
        if not (profile.has_cart or profile.has_products) and not any(
            k in text for k in ("checkout", "buy now", "purchase", "add to cart")
        ):
            return False, "No cart, products, or checkout elements found"
    elif workflow_type == "login":
        if not profile.has_password() and not any(k in text for k in ("login", "sign in", "log in")):
            return False, "No password field or login button found"
    elif workflow_type == "registration":
        signup = any(k in text for k in ("sign up", "register", "create account", "join"))
        if not signup or not profile.has_password():
            return False, "No registration indicators or password field found"
    elif workflow_type == "contact":
        if not profile.has_message_field() and not any(
            k in text for k in ("contact", "get in touch", "reach us")
        ):
            return False, "No contact form or message field found"
    elif workflow_type == "newsletter":
        subscribe = any(
            k in text for k in ("subscribe", "sign up for updates", "join our mailing", "get updates")
        )
        non_email = [i for i in inputs if i.type != "email" and "email" not in _ident(i)]
        if not subscribe or profile.has_message_field() or len(non_email) > 2:
            return False, "No dedicated newsletter subscription form found (detected contact/inquiry form instead)"
    elif workflow_type == "booking":
        has_date = any(
            i.type in ("date", "datetime-local") or "date" in _ident(i) for i in inputs
        )
        booking = any(
            k in text for k in ("book now", "make a reservation", "schedule appointment", "reserve")
        )
        contact_like = profile.has_message_field() and not has_date
        if (not has_date and not booking) or contact_like:
            return False, "No booking/reservation form with date fields found"
    return True, ""


def validate_availability(workflow_type: str, profile: PageProfile) -> Availability:
    """Score *profile* against one workflow definition."""
    definition = WORKFLOW_DEFINITIONS.get(workflow_type)
    if definition is None:
        return Availability(False, 0, "Unknown workflow type")

    found = [k for k in definition.required_indicators if k in profile.text]
    matched_form = sum(1 for k in definition.form_indicators if k in profile.text)
    required_ratio = len(found) / len(definition.required_indicators)
    form_ratio = matched_form / len(definition.form_indicators)
    confidence = (required_ratio * 0.6 + form_ratio * 0.4) * 100

    passed, special_reason = _special_check(workflow_type, profile)
    if not passed:
        confidence = min(confidence, 20)
    available = passed and confidence >= AVAILABLE_CONFIDENCE

    if available:
        reason = f"Found indicators: {', '.join(found[:3])}"
    else:
        reason = special_reason or f"Missing key indicators for {definition.name}"
    return Availability(available, round(confidence), reason)


@dataclass
class Candidate:
    type: str
    confidence: int
    reason: str
    profile: PageProfile


def analyze_page(profile: PageProfile) -> list[Candidate]:
    """Every workflow type *profile* plausibly offers, with heuristic extras."""
    found: list[Candidate] = []
    for workflow_type in WORKFLOW_DEFINITIONS:
        result = validate_availability(workflow_type, profile)
        if result.available:
            found.append(Candidate(workflow_type, result.confidence, result.reason, profile))

    types = {c.type for c in found}
    emails = [i for i in profile.inputs if i.type == "email" or "email" in _ident(i)]
    email_only = (
        bool(emails)
        and len(profile.inputs) <= 2
        and not profile.has_message_field()
        and not profile.has_password()
    )
    if "newsletter" not in types and email_only:
        found.append(Candidate("newsletter", 80, "Detected email-only subscription form", profile))
    if "checkout" not in types and (profile.has_cart or profile.has_products):
        found.append(Candidate("checkout", 70, "Detected cart/products indicators", profile))
    if "contact" not in types and profile.has_message_field():
        found.append(Candidate("contact", 70, "Detected contact form with message/subject", profile))
    return found


def build_meaningful_workflows(candidates: list[Candidate]) -> list[Candidate]:
    """Keep the best candidate per type, dropping implausible auth and contact hits."""
    best: dict[str, Candidate] = {}
    for candidate in candidates:
        if candidate.type not in _KEPT_TYPES:
            continue
        if candidate.type == "contact" and not candidate.profile.has_message_field():
            continue
        if candidate.type in ("login", "registration") and not candidate.profile.has_password():
            continue
        key = "checkout" if candidate.type == "cart" else candidate.type
        current = best.get(key)
        if current is None or candidate.confidence > current.confidence:
            candidate.type = key
            best[key] = candidate
    return sorted(best.values(), key=lambda c: c.confidence, reverse=True)


def score_links(links: tuple[str, ...] | list[str], base_url: str) -> list[str]:
    """Same-host links ranked by workflow keywords in their path."""
    host = urlparse(base_url).netloc.lower()
    scored: list[tuple[int, str]] = []
    seen: set[str] = set()
    for link in links:
        key = normalize_url(link)
        if not key or key in seen or urlparse(key).netloc != host:
            continue
        seen.add(key)
        path = urlparse(key).path.lower()
        score = sum(10 for k in WORKFLOW_URL_KEYWORDS if k in path)
        if len([p for p in path.split("/") if p]) <= 2:
            score += 5
        if score > 0:
            scored.append((score, link))
    # stable sort keeps document order among equal scores
    scored.sort(key=lambda item: -item[0])
    return [link for _, link in scored[:MAX_RELEVANT_LINKS]]


# ---------------------------------------------------------------------------
# Templated steps
# ---------------------------------------------------------------------------


def _selector_for(inp: FormInput, fallback: str) -> str:
    if inp.selector:
        return inp.selector
    if inp.id:
        return f"#{inp.id}"
    if inp.name:
        return f'[name="{inp.name}"]'
    return fallback


def newsletter_steps(profile: PageProfile) -> list[WorkflowStep]:
    """Fill the email field, then submit it."""
    email = next(
        (
            i
            for i in profile.inputs
            if i.type == "email" or any(k in _ident(i) for k in ("email", "mail", "newsletter"))
        ),
        None,
    )
    if email is None:
        logger.debug("Newsletter: no email input on %s", profile.url)
        return []
    selector = _selector_for(email, 'input[type="email"]')
    return [
        WorkflowStep(0, "fill", selector, "test@example.com", "Enter email address"),
        WorkflowStep(1, "submit", selector, "", "Subscribe to newsletter"),
    ]


def _search_input(profile: PageProfile) -> Optional[FormInput]:
    for inp in profile.inputs:
        ident = _ident(inp)
        if inp.type == "search" or "search" in ident or inp.name.lower() in ("q", "query"):
            return inp
    return None


def search_steps(profile: PageProfile) -> list[WorkflowStep]:
    inp = _search_input(profile)
    if inp is None:
        return []
    selector = _selector_for(inp, 'input[type="search"], input[name="q"]')
    return [
        WorkflowStep(0, "fill", selector, "test", "Enter search query"),
        WorkflowStep(1, "submit", selector, "", "Submit search"),
    ]


def checkout_steps(profile: PageProfile) -> list[WorkflowStep]:
    """Search, pick a product, add it to the cart and place a cash-on-delivery order."""
    steps: list[WorkflowStep] = []

    def add(action: str, selector: str, value: str, description: str, optional: bool = False) -> None:
        steps.append(WorkflowStep(len(steps), action, selector, value, description, optional=optional))

    inp = _search_input(profile)
    if inp is not None:
        selector = _selector_for(inp, 'input[type="search"], input[name="q"]')
        add("fill", selector, "shirt", "Search for a product")
        add("submit", selector, "", "Submit search")

    add(
        "click",
        ".product-card a:first-of-type, .product-item a:first-of-type, "
        "[class*='product'] a:first-of-type, article a:first-of-type",
        "",
        "Select first product from results",
    )
    add(
        "click",
        "button[name*='add' i], button[class*='add-to-cart' i], button:has-text('Add to Cart'), "
        "button:has-text('Add to Bag'), form[action*='cart'] button[type='submit']",
        "",
        "Add product to cart",
    )
    add(
        "click",
        "a[href*='cart'], button:has-text('View Cart'), button:has-text('Cart'), [class*='cart-link']",
        "",
        "View shopping cart",
    )
    add(
        "click",
        "button:has-text('Checkout'), a:has-text('Checkout'), a[href*='checkout'], "
        "form[action*='checkout'] button",
        "",
        "Proceed to checkout",
    )
    add(
        "fill",
        "main input[name*='email' i], form[action*='checkout'] input[type='email'], "
        "input[autocomplete='email']",
        "testbuyer@example.com",
        "Enter email address",
    )
    add("fill", "main input[name*='first' i], input[autocomplete='given-name']", "Test", "Enter first name")
    add("fill", "main input[name*='last' i], input[autocomplete='family-name']", "Buyer", "Enter last name")
    add(
        "fill",
        "main input[name*='address' i]:not([name*='address2']), input[autocomplete='address-line1']",
        "123 Test Street",
        "Enter street address",
    )
    add("fill", "main input[name*='city' i], input[autocomplete='address-level2']", "Test City", "Enter city")
    add(
        "fill",
        "main input[name*='phone' i], form input[type='tel'], input[autocomplete='tel']",
        "+1234567890",
        "Enter phone number",
        optional=True,
    )
    add(
        "click",
        "input[value*='cod' i], input[value*='cash' i], label:has-text('Cash on Delivery'), "
        "label:has-text('COD')",
        "",
        "Select Cash on Delivery payment",
        optional=True,
    )
    add(
        "click",
        "button:has-text('Place Order'), button:has-text('Complete Order'), "
        "button:has-text('Confirm Order'), form[action*='checkout'] button[type='submit']",
        "",
        "Place order",
    )
    return steps


def _best_form(workflow_type: str, profile: PageProfile) -> Optional[FormMeta]:
    if not profile.forms:
        return None

    def score(form: FormMeta) -> int:
        types = {i.type for i in form.inputs}
        idents = " ".join(_ident(i) for i in form.inputs)
        points = len(form.inputs)
        if workflow_type in ("login", "registration") and "password" in types:
            points += 20
        if workflow_type == "contact" and ("textarea" in types or "message" in idents):
            points += 20
        if workflow_type == "booking" and ("date" in types or "date" in idents):
            points += 20
        return points

    return max(profile.forms, key=score)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class WorkflowDiscovery:
    """Finds the workflows a site offers, starting from one URL.

    Pages are loaded through *fetcher*, so discovery sees exactly the
    signals a crawl would.  Form-backed workflows are planned by *planner*;
    when it fails the rule-based planner fills in.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        planner: FormIntelligence,
        assembler: Optional[WorkflowAssembler] = None,
        max_pages: int = 15,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        if max_pages < 1:
            raise ValueError("maxPages must be at least 1")
        self.fetcher = fetcher
        self.planner = planner
        self.assembler = assembler or WorkflowAssembler()
        self.max_pages = max_pages
        self.shutdown_event = shutdown_event or asyncio.Event()
        self._fallback = HeuristicIntelligence()

    async def discover(self, url: str) -> DiscoveryResult:
        if not url:
            raise ValueError("Missing URL")
        entry = await self.fetcher.fetch(url, 0)
        if entry.mode == "error":
            raise FetchError(url, entry.error or "Entry page could not be loaded")

        scanned: list[tuple[str, str]] = [(entry.url, entry.title)]
        scanned_keys = {normalize_url(entry.url)}
        candidates = analyze_page(PageProfile.from_page(entry))

        for link in score_links(entry.links, url):
            if len(scanned) >= self.max_pages:
                logger.info("Reached max pages limit (%d)", self.max_pages)
                break
            if self.shutdown_event.is_set():
                break
            key = normalize_url(link)
            if key in scanned_keys:
                continue
            page = await self.fetcher.fetch(link, 1)
            if page.mode == "error":
                logger.info("Failed to scan %s: %s", link, page.error)
                continue
            scanned_keys.add(key)
            scanned.append((page.url, page.title))
            candidates.extend(analyze_page(PageProfile.from_page(page)))

        workflows: list[DetectedWorkflow] = []
        for candidate in build_meaningful_workflows(candidates):
            definition = WORKFLOW_DEFINITIONS[candidate.type]
            steps = await self.steps_for(candidate.type, candidate.profile)
            reason = candidate.reason
            if not steps:
                reason = f"{reason}; no fillable form found" if reason else "No fillable form found"
            workflows.append(
                DetectedWorkflow(
                    id=f"{candidate.type}-{len(workflows)}",
                    type=candidate.type,
                    name=definition.name,
                    confidence=candidate.confidence,
                    available=bool(steps),
                    reason=reason,
                    page_url=candidate.profile.url,
                    page_title=candidate.profile.title,
                    steps=steps,
                )
            )
            logger.info(
                "Found %s on %s (%d%% confidence, %d steps)",
                definition.name,
                candidate.profile.url,
                candidate.confidence,
                len(steps),
            )

        return DiscoveryResult(url=url, detected_workflows=workflows, scanned_pages=scanned)

    async def steps_for(self, workflow_type: str, profile: PageProfile) -> list[WorkflowStep]:
        if workflow_type == "newsletter":
            return newsletter_steps(profile)
        if workflow_type == "checkout":
            return checkout_steps(profile)
        if workflow_type == "search":
            return search_steps(profile)

        form = _best_form(workflow_type, profile)
        if form is None:
            return []
        plan = await self._plan(form, profile)
        form_page = FormPage(url=profile.url, title=profile.title, forms=1, forms_meta=[form])
        return self.assembler.assemble_form_workflow(form_page, form, plan)

    async def _plan(self, form: FormMeta, profile: PageProfile) -> FillPlan:
        try:
            return await self.planner.plan_form_fill(form, profile.url, profile.title)
        except Exception as exc:
            logger.warning("Planner failed for %s, using rule-based plan: %s", profile.url, exc)
            return await self._fallback.plan_form_fill(form, profile.url, profile.title)
