"""Celery worker configuration.

Background processing for settlement notifications.
"""

from celery import Celery

from rentalpay.config import settings

# Create Celery app
celery_app = Celery(
    "rentalpay_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["rentalpay.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=120,
    task_soft_time_limit=90,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,
)


if __name__ == "__main__":
    celery_app.start()
