from celery import Celery
from celery.signals import setup_logging

from app.utils.logging import CustomizeLogger

# Create Celery app
celery = Celery("uar_batch")

# Load configuration from app.config.celeryconfig module
celery.config_from_object("app.config.celeryconfig")


@setup_logging.connect
def _route_worker_logging_to_loguru(**kwargs):
    # Connecting this signal stops Celery from installing its own root handlers
    CustomizeLogger.intercept_standard_logging()
