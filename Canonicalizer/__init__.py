from .Canonicalizer import (
    NEWSLETTER,
    OTHER,
    SEARCH,
    DedupContext,
    FormCanonicalizer,
    FormDecision,
    form_category,
    form_signature,
    is_newsletter_form,
    is_search_form,
)
