from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from rq.utils import import_attribute
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.config import Settings, get_settings
from videocore.core.db import create_engine, create_session_factory
from videocore.core.errors import UnhandledJobError
from videocore.core.jobs import JobPayload, parse_job_payload
from videocore.core.logging import configure_logging, get_logger
from videocore.core.storage import Storage, get_storage

logger = get_logger(component="worker")


@dataclass(slots=True)
class JobContext:
    settings: Settings
    storage: Storage
    session_factory: async_sessionmaker[AsyncSession]


JobHandler = Callable[[JobPayload, JobContext], Awaitable[None]]

_HANDLERS: Dict[str, JobHandler] = {}


def register_job_handler(job_type: str, handler: JobHandler) -> None:
    _HANDLERS[job_type] = handler


def unregister_job_handler(job_type: str) -> None:
    _HANDLERS.pop(job_type, None)


def resolve_consumer(settings: Settings, job_type: str) -> Optional[Callable[[str], Any]]:
    path = settings.job_consumers.get(job_type)
    if not path:
        return None
    return import_attribute(path)


def run_job(payload_json: str) -> None:
    """Entry-point executed by the job backend (RQ or inline).

    A handler registered in this process wins; otherwise the payload goes to
    the consumer configured for its type. A job nobody consumes raises
    ``UnhandledJobError`` so RQ keeps it in the failed registry and the inline
    backend surfaces the error to the caller.
    """

    settings = get_settings()
    configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO))
    payload = parse_job_payload(payload_json)

    handler = _HANDLERS.get(payload.type)
    if handler is None:
        consumer = resolve_consumer(settings, payload.type)
        if consumer is None:
            logger.error("job_without_handler", job_type=payload.type)
            raise UnhandledJobError(f"no handler or consumer for {payload.type!r} jobs")
        logger.info("job_forwarded", job_type=payload.type, consumer=settings.job_consumers[payload.type])
        consumer(payload_json)
        return

    engine = create_engine(settings)
    context = JobContext(settings=settings, storage=get_storage(settings), session_factory=create_session_factory(engine))

    async def _runner() -> None:
        try:
            await handler(payload, context)
        finally:
            await engine.dispose()

    asyncio.run(_runner())


__all__ = [
    "JobContext",
    "JobHandler",
    "register_job_handler",
    "unregister_job_handler",
    "resolve_consumer",
    "run_job",
]
