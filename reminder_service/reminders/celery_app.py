from celery import Celery

from reminder_service.core.config import Settings, get_settings


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "reminders",
        broker=settings.CELERY_BROKER_URL or settings.RABBITMQ_URL,
        backend=settings.CELERY_RESULT_BACKEND or None,
    )

    app.conf.update(
        task_acks_late=True,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.WORKER_CONCURRENCY,
        task_default_queue="reminders.tasks",
        include=["reminder_service.reminders.tasks"],
    )

    # Celery Beat schedule for periodic scanning
    app.conf.beat_schedule = {
        "scan-due-reminders": {
            "task": "reminders.scan_due",
            "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
            # A tick nobody picked up before the next one is due is dropped
            "options": {"expires": settings.SCHEDULER_SCAN_INTERVAL_SECONDS},
        },
        "purge-idempotency-records": {
            "task": "reminders.purge_idempotency_records",
            "schedule": settings.IDEMPOTENCY_PURGE_INTERVAL_SECONDS,
        },
    }
    return app


celery_app = create_celery_app(get_settings())
