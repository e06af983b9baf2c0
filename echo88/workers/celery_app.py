import logging

from celery import Celery
from celery.signals import task_failure

from echo88.core.config import get_settings


logger = logging.getLogger(__name__)

settings = get_settings()

# Use explicit broker/backend or fall back to REDIS_URL
broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
result_backend = settings.CELERY_RESULT_BACKEND or settings.REDIS_URL

celery_app = Celery(
    "echo88",
    broker=broker_url,
    backend=result_backend,
    include=["echo88.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_time_limit=60,
    task_soft_time_limit=45,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=False,
)


@task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    name = getattr(sender, "name", sender)
    logger.error("[background] task %s (%s) failed: %r", name, task_id, exception)


def dispatch_background(task, **kwargs) -> None:
    """Submit ``task`` without waiting for it.

    Broker outages are logged, never raised to the caller.
    """
    try:
        task.apply_async(kwargs=kwargs)
    except Exception as exc:
        logger.error("[background] could not enqueue %s: %s", task.name, exc)
