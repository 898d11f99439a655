from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from loguru import logger

from app.core.settings import settings


@dataclass(frozen=True)
class Session:
    cst: str
    security_token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class SessionFactory(Protocol):
    async def create_session(self) -> tuple[str, str]: ...


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionManager:
    """Process-wide holder of the current Capital.com session.

    One instance per app, created by ``create_app`` and shared by every handler.
    Concurrent callers that all see an expired session may each create a new one;
    the last one stored wins, which the upstream tolerates.
    """

    def __init__(
        self,
        factory: SessionFactory,
        *,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._factory = factory
        self._ttl = timedelta(seconds=int(ttl_seconds if ttl_seconds is not None else settings.CAPITAL_SESSION_TTL_SECONDS))
        self._clock = clock
        self._cached: Session | None = None

    @property
    def cached(self) -> Session | None:
        return self._cached

    async def get_valid_session(self) -> Session:
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached

        # Raises AuthenticationError; the cache is left untouched on failure.
        cst, security_token = await self._factory.create_session()
        session = Session(cst=cst, security_token=security_token, expires_at=self._clock() + self._ttl)
        self._cached = session
        logger.info("Capital.com session created (expires {})", session.expires_at.isoformat())
        return session

    def invalidate(self) -> None:
        if self._cached is not None:
            logger.info("Capital.com session invalidated")
        self._cached = None
