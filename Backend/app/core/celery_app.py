import logging
import math
from celery import Celery
from app.core.config import settings
from app.services.adapters.base import processing_budget_seconds

logger = logging.getLogger(__name__)

def get_celery_app() -> Celery:
    # If using Docker, REDIS_URL would be 'redis://redis:6379/0'
    redis_url = settings.REDIS_URL

    app = Celery(
        "cvformatter_tasks",
        broker=redis_url,
        backend=redis_url,
        include=["app.tasks"]
    )

    app.conf.update(
        result_expires=86400, # 24 hours
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # Resilience: Don't ack tasks until AFTER they complete.
        # If a worker dies mid-task, Redis will re-queue the task to another worker.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        # Redelivery must not start while the first run can still be calling models
        broker_transport_options={'visibility_timeout': math.ceil(processing_budget_seconds())},
        beat_schedule={
            "reap-stale-jobs": {
                "task": "app.tasks.reap_stale_jobs",
                "schedule": float(settings.REAPER_INTERVAL_SECONDS),
            },
        },
    )

    # Safe Redis Check (Smart Fallback)
    # If Redis is not running, we switch to 'task_always_eager' (synchronous mode).
    # The orchestrator then hands background work to its local executor instead.
    try:
        import redis
        client = redis.from_url(redis_url, socket_connect_timeout=1)
        client.ping()
        logger.info(f"[Celery] Connected to Redis at {redis_url}")
    except Exception as e:
        logger.warning(f"[Celery] Redis not available ({e}). Running in SYNC mode (task_always_eager=True).")
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True
        )

    return app

celery_app = get_celery_app()


def is_eager() -> bool:
    """True when no broker is reachable and tasks would run inline."""
    return bool(celery_app.conf.task_always_eager)
