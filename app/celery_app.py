"""Celery application for the side effects of ledger operations.

Notices, refunds and the lapsed-offer sweep each get their own queue so a
backlog of emails never delays a refund or the sweep.
"""

import logging
from logging.config import dictConfig
from typing import Any, Dict, Tuple

from celery import Celery, Task
from celery.signals import setup_logging
from kombu import Queue

from .core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

TASK_QUEUES: Dict[str, str] = {
    "app.tasks.deliver_notice": "notifications",
    "app.tasks.process_booking_refund": "payments",
    "app.tasks.sweep_expired_waitlist_offers": "scheduled",
}

celery_app = Celery(
    "sweatspot",
    broker=settings.redis.broker_url,
    backend=settings.redis.backend_url,
    include=["app.tasks"],
)

celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.CELERY_ACCEPT_CONTENT,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_default_queue="default",
    task_queues=[Queue("default")]
    + [Queue(name) for name in sorted(set(TASK_QUEUES.values()))],
    task_routes={task: {"queue": queue} for task, queue in TASK_QUEUES.items()},
    beat_schedule={
        "sweep-expired-waitlist-offers": {
            "task": "app.tasks.sweep_expired_waitlist_offers",
            "schedule": float(settings.waitlist.SWEEP_INTERVAL_SECONDS),
        },
    },
    # A refund must survive a worker crash mid-task
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    result_expires=3600,
    task_soft_time_limit=120,
    task_time_limit=300,
    task_annotations={"app.tasks.deliver_notice": {"rate_limit": "100/m"}},
)


@setup_logging.connect  # type: ignore[misc]
def configure_worker_logging(*args: Any, **kwargs: Any) -> None:
    """Workers log the same JSON records as the API."""
    level = settings.monitoring.LOG_LEVEL
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": "%(levelname)s %(asctime)s %(message)s %(name)s %(processName)s",
                    "rename_fields": {"levelname": "level", "asctime": "time"},
                },
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "json"},
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": {"celery": {"level": "INFO"}},
        }
    )


class LoggedTask(Task):
    """Logs failures and retries with the task id attached."""

    abstract = True

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        einfo: Any,
    ) -> None:
        logger.error(
            f"Task {self.name} [{task_id}] failed: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "task_args": args},
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        einfo: Any,
    ) -> None:
        logger.warning(
            f"Task {self.name} [{task_id}] retrying: {exc}",
            extra={"task_id": task_id, "retry_count": self.request.retries},
        )


celery_app.Task = LoggedTask
