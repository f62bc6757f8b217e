from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from threading import Thread
from typing import Any, TypeVar

from revision_api.celery_app import celery_app
from revision_api.config.settings import get_settings
from revision_api.core.logging import get_logger
from revision_api.db.session import get_sessionmaker
from revision_api.services.revision.service import RevisionService

T = TypeVar("T")

logger = get_logger(__name__)


def _execute_async(coro: Coroutine[Any, Any, T]) -> T:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    result: dict[str, Any] = {"value": None, "error": None}

    def runner() -> None:
        try:
            result["value"] = asyncio.run(coro)
        except Exception as exc:  # pragma: no cover - propagated below
            result["error"] = exc

    thread = Thread(target=runner, daemon=True)
    thread.start()
    thread.join()
    if result["error"] is not None:
        raise result["error"]
    return result["value"]


@celery_app.task(name="revision.mark_due_notes_stale")
def mark_due_notes_stale() -> int:
    """Beat-scheduled sweep flagging old notes of every learner as stale."""
    return _execute_async(_mark_due_notes_stale())


async def _mark_due_notes_stale() -> int:
    service = RevisionService(get_sessionmaker(), settings=get_settings())
    result = await service.mark_due_notes_stale()
    logger.info("stale_sweep_completed", marked=result.marked)
    return result.marked


__all__ = ["mark_due_notes_stale"]
