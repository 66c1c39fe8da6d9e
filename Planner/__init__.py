from .Base import (
    INTENTS,
    NON_TRANSACTIONAL,
    TRANSACTIONAL,
    UNKNOWN,
    FormIntelligence,
    PageState,
)
from .Groq import GroqIntelligence, parse_json_safe
from .Heuristic import (
    FALLBACK_SUBMIT_SELECTOR,
    HeuristicIntelligence,
    choose_submit,
    detect_outcome,
    value_for_field,
)


def build_intelligence(settings) -> FormIntelligence:
    """Return the hosted planner when an API key is configured, else the rule-based one."""
    if settings.has_llm:
        return GroqIntelligence(
            api_key=settings.groq_api_key,
            model=settings.groq_model,
            api_url=settings.groq_api_url,
            timeout=settings.llm_timeout,
        )
    return HeuristicIntelligence()
