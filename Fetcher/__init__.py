from .Fetcher import DynamicFetch, FailedFetch, FetchOutcome, PageFetcher, StaticFetch
from .Session import browser_session, http_client, scoped_context
from .Signals import (
    PageSignals,
    ShellHeuristic,
    absolute_link,
    build_selector,
    label_intent,
    parse_html,
)
