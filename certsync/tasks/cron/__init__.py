from .force_resync import force_resync_task
from .integrity_audit import integrity_audit_task

__all__ = [
    "integrity_audit_task",
    "force_resync_task",
]
