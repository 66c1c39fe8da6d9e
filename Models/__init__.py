from .Crawl import (
    PAGE_MODES,
    CrawlPage,
    CrawlProgress,
    CrawlResult,
    DetailedForms,
    FormButton,
    FormInput,
    FormMeta,
    PageElement,
    PageForms,
    SummaryOnly,
)
from .Errors import (
    ClassifierError,
    FetchError,
    FlowError,
    SelectorNotFound,
)
from .Forms import FormDetection, FormPage
from .Workflow import (
    ACTIONABLE_STEPS,
    STEP_ACTIONS,
    VERDICTS,
    WORKFLOW_TYPES,
    DetectedWorkflow,
    DiscoveryResult,
    ExecutionBatch,
    FillAction,
    FillPlan,
    OutcomeAnalysis,
    WorkflowEdge,
    WorkflowExecutionResult,
    WorkflowGraph,
    WorkflowNode,
    WorkflowStep,
    steps_from_list,
)
