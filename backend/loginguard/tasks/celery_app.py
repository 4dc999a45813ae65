# backend/loginguard/tasks/celery_app.py
import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init, worker_process_shutdown

from loginguard.core.config import settings
from loginguard.db.session import dispose_worker_db_resources_sync, initialize_worker_db_resources

logger = logging.getLogger("loginguard.tasks.celery_app")

celery_app = Celery(
    "loginguard_worker",
    broker=str(settings.CELERY_BROKER_URL),
    backend=str(settings.CELERY_RESULT_BACKEND),
    include=["loginguard.tasks.maintenance"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.TIMEZONE,
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    task_track_started=True,
    beat_schedule={
        "purge-expired-login-attempts": {
            "task": "loginguard.tasks.maintenance.purge_expired_login_attempts",
            # Daily, off-peak
            "schedule": crontab(hour=3, minute=15),
        },
    },
)


# --- Worker Process Lifecycle Signal Handlers ---


@worker_process_init.connect(weak=False)
def init_worker_process_signal(**_kwargs):
    """Signal handler for when a Celery worker process starts."""
    logger.info("CELERY_WORKER_PROCESS_INIT: Initializing DB resources.")
    initialize_worker_db_resources()
    logger.info("CELERY_WORKER_PROCESS_INIT: DB resources initialization complete.")


@worker_process_shutdown.connect(weak=False)
def shutdown_worker_process_signal(**_kwargs):
    """Signal handler for when a Celery worker process shuts down."""
    logger.info("CELERY_WORKER_PROCESS_SHUTDOWN: Signal received. Disposing DB resources.")
    dispose_worker_db_resources_sync()
    logger.info("CELERY_WORKER_PROCESS_SHUTDOWN: DB resources disposal complete.")


@celery_app.task(name="loginguard.tasks.health_check_celery")
def health_check_celery_task() -> str:
    logger.info("Celery health check task executed.")
    return "Celery worker is healthy."
