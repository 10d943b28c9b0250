from celery import Celery

# Create Celery app
celery = Celery("certsync")

# Load configuration from certsync.config.celeryconfig module
celery.config_from_object("certsync.config.celeryconfig")
