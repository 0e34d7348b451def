from celery import Celery

from deck_automation.config import settings

celery_app = Celery("deck_automation", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    beat_schedule={
        "sweep-pending-tracking-sheets": {
            "task": "deck_automation.tasks.sweep_pending_tracking_sheets",
            "schedule": settings.sweep_interval_minutes * 60.0,
        }
    },
)
