"""
Celery app for CargoDesk background work: outbox delivery and billing sweeps.

Redis is both broker and result backend. Beat drives the schedules below.
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cargodesk",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.outbox.*": {"queue": "notifications"},
        "workers.billing.*": {"queue": "billing"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Side effects ────────────────────────────────────────────
        "drain-outbox-1m": {
            "task": "workers.outbox.drain",
            "schedule": crontab(minute="*"),
            "options": {"queue": "notifications"},
        },
        # ── Billing ─────────────────────────────────────────────────
        "flag-overdue-invoices-daily": {
            "task": "workers.billing.flag_overdue_invoices",
            "schedule": crontab(hour=0, minute=15),
            "options": {"queue": "billing"},
        },
    },
)

celery_app.conf.imports = ("workers.outbox", "workers.billing")
