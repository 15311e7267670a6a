"""Process-wide collaborators, built once at startup and passed explicitly."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Coroutine, Optional, Set

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from onesaas.config import Settings
from onesaas.db import create_engine, create_sessionmaker
from onesaas.middleware.rate_limit import PlanRateLimiter
from onesaas.services.mailer import Mailer
from onesaas.services.tokens import TokenIssuer
from onesaas.utils.encryption import SecretCodec

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Fire-and-forget tasks that must never fail the request that started them.

    Holds a reference to each task until it finishes so it is not garbage
    collected mid-flight, and logs any exception it ends with.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks; used at shutdown and in tests."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d background task(s) still running at shutdown", len(pending))


@dataclass
class AppContext:
    settings: Settings
    codec: SecretCodec
    tokens: TokenIssuer
    mailer: Mailer
    engine: AsyncEngine
    session_factory: async_sessionmaker
    plan_limiter: PlanRateLimiter = field(default_factory=PlanRateLimiter)
    tasks: BackgroundTasks = field(default_factory=BackgroundTasks)

    async def close(self) -> None:
        await self.tasks.drain()
        await self.engine.dispose()


def build_context(settings: Settings, engine: Optional[AsyncEngine] = None,
                  mailer: Optional[Mailer] = None) -> AppContext:
    """Wire up the application's collaborators from settings.

    ``engine`` and ``mailer`` can be supplied to share a test database or
    capture outgoing mail.
    """
    codec = SecretCodec(settings.encryption_key)
    engine = engine or create_engine(settings.database_url, settings.store_timeout_seconds)
    return AppContext(
        settings=settings,
        codec=codec,
        tokens=TokenIssuer(codec, settings.jwt_access_secret, settings.jwt_refresh_secret),
        mailer=mailer or Mailer.from_settings(settings),
        engine=engine,
        session_factory=create_sessionmaker(engine),
    )
