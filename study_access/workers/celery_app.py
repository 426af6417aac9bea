from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from study_access.core.config import get_settings
from study_access.core.logging import configure_logging

settings = get_settings()

celery_app = Celery(
    "study_access",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "study_access.workers.tasks.trial_expiry",
    ],
)

celery_app.conf.update(
    task_default_queue="q_normal",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "trial-expiry-sweep-daily": {
            "task": "study_access.workers.tasks.trial_expiry.run_trial_expiry_sweep",
            "schedule": crontab(hour=15, minute=0),
            "options": {"queue": "q_normal"},
        },
    },
)


@celery_app.task(name="study_access.workers.celery_app.ping")
def ping() -> str:
    return "pong"


@setup_logging.connect
def configure_worker_logging(**_kwargs) -> None:
    configure_logging(settings.log_level, service="study_access-worker")
