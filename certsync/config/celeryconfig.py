from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = settings.redis_url
result_backend = settings.redis_url

# Task Discovery
include = ["certsync.tasks.cron.integrity_audit", "certsync.tasks.cron.force_resync"]

# Timezone Configuration
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

beat_schedule = {
    # Integrity audit - every hour on the hour
    "hourly-integrity-audit": {
        "task": "certsync.tasks.cron.integrity_audit.integrity_audit_task",
        "schedule": crontab(minute=0),
        "args": ("integrity_audit_cron",),
    },
    # Backlog re-drive - daily at 02:30 UTC
    "daily-force-resync": {
        "task": "certsync.tasks.cron.force_resync.force_resync_task",
        "schedule": crontab(hour=2, minute=30),
        "args": ("force_resync_cron",),
    },
}

# Default Queue
task_default_queue = "certsync"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
