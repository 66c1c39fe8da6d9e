from .Executor import (
    NO_ACTIONABLE_REASON,
    WorkflowExecutor,
    dismiss_overlays,
    page_state,
    split_selector,
)
from .FormTester import FormTester, FormTestReport, FormTestResult, match_kept_form
