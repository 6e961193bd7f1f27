"""Celery application factory."""

from __future__ import annotations

import ssl
from typing import Any

import structlog
from celery import Celery, signals
from kombu import Queue

from app.backend.src.core.config import get_settings
from app.backend.src.core.logging import configure_logging

LOGGER = structlog.get_logger(__name__)

settings = get_settings()


def _build_ssl_options() -> dict[str, Any]:
    """Return SSL options for Redis connections."""

    return {"ssl_cert_reqs": ssl.CERT_REQUIRED}


def _verify_celery_connectivity() -> None:
    """Eagerly validate broker connectivity.

    A worker that cannot reach Redis fails fast with a clear log message
    instead of idling while thumbnail jobs pile up.
    """

    try:
        with celery.connection_for_read() as connection:
            connection.ensure_connection(max_retries=1)
    except Exception as exc:  # pragma: no cover - requires broker connectivity
        LOGGER.error(
            "celery_broker_unavailable",
            broker=settings.broker_url,
            error=str(exc),
        )
        raise


celery = Celery(
    "edumap_media",
    broker=settings.broker_url,
    backend=settings.result_backend,
)

celery.conf.update(include=["tasks.thumbnail_tasks"])

celery_conf: dict[str, object] = {
    "task_default_queue": "media",
    "task_queues": (Queue("media"),),
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "worker_prefetch_multiplier": 1,
    "broker_transport_options": {
        "global_keyprefix": "edumap-media-broker:",
    },
    "result_backend_transport_options": {
        "global_keyprefix": "edumap-media-result:",
    },
    "broker_connection_retry_on_startup": True,
}

if settings.broker_url.startswith("rediss://"):
    celery_conf["broker_use_ssl"] = _build_ssl_options()

if settings.result_backend.startswith("rediss://"):
    celery_conf["redis_backend_use_ssl"] = _build_ssl_options()

celery.conf.update(**celery_conf)


@signals.worker_process_init.connect
def _configure_worker_logging(**_: Any) -> None:
    configure_logging()


@signals.worker_ready.connect
def _log_worker_configuration(sender: Any | None = None, **_: Any) -> None:
    """Emit structured worker configuration details after startup."""

    app = sender.app if sender is not None else celery
    _verify_celery_connectivity()
    registered_tasks = sorted(
        task_name for task_name in app.tasks.keys() if task_name.startswith("tasks.")
    )
    LOGGER.info(
        "celery_worker_configuration",
        default_queue=app.conf.task_default_queue,
        registered_tasks=registered_tasks,
    )


@signals.task_postrun.connect
def _log_task_postrun(
    sender: Any | None = None,
    task_id: str | None = None,
    task: Any | None = None,
    retval: Any | None = None,
    state: str | None = None,
    **_: Any,
) -> None:
    """Emit completion information after a task finishes."""

    task_name = getattr(task, "name", None) or ""
    if task_name and not task_name.startswith("tasks."):
        return
    LOGGER.info(
        "celery_task_postrun",
        task_id=task_id,
        task_name=task_name or None,
        state=state,
        result_repr=repr(retval) if state == "SUCCESS" else None,
    )


__all__ = ["celery"]
