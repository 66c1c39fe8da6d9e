from .Graph import DEFAULT_INTENT, WorkflowGraphBuilder, intent_histogram
