from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "integrity_audit_task",
    "force_resync_task",
]
