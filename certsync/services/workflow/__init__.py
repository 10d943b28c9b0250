from .listeners import ChangeListenerSubsystem
from .orchestrator import WorkflowOrchestrator
from .recipients import resolve_or_create_recipient

__all__ = [
    "ChangeListenerSubsystem",
    "WorkflowOrchestrator",
    "resolve_or_create_recipient",
]
