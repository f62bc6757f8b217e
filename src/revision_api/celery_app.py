from __future__ import annotations

from datetime import timedelta

from celery import Celery

from revision_api.config.settings import get_settings


def _create_celery() -> Celery:
    settings = get_settings()
    app = Celery(
        "revision",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
    )
    app.conf.update(
        task_always_eager=settings.celery_task_always_eager,
        task_eager_propagates=settings.celery_task_always_eager,
        timezone="UTC",
        enable_utc=True,
        include=["revision_api.services.revision.tasks"],
        beat_schedule={
            "mark-due-revision-notes-stale": {
                "task": "revision.mark_due_notes_stale",
                "schedule": timedelta(minutes=settings.stale_sweep_interval_minutes),
            }
        },
    )
    return app


celery_app = _create_celery()

__all__ = ["celery_app"]
