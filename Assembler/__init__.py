from .Assembler import (
    MAX_EDGE_WORKFLOWS,
    WorkflowAssembler,
    apply_custom_plan,
    renumber,
)
from .Discovery import (
    WORKFLOW_DEFINITIONS,
    PageProfile,
    WorkflowDiscovery,
    analyze_page,
    build_meaningful_workflows,
    checkout_steps,
    newsletter_steps,
    score_links,
    search_steps,
    validate_availability,
)
