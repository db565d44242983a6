from celery import Celery

# Create Celery app
celery = Celery("crm_reminders")

# Load configuration from crm_reminders.config.celeryconfig module
celery.config_from_object("crm_reminders.config.celeryconfig")
