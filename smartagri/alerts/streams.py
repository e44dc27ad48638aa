"""Long-lived alert streaming sessions.

Each session polls the active-alert queries on a fixed interval and pushes
every matching alert to its observer. Sessions are independent: one
session's failure or cancellation never affects another.

Lifecycle:
    1. ``start_stream(filter, observer)`` registers a session, spawns its task
    2. ``cancel(session_id)`` stops one session (idempotent)
    3. ``shutdown()`` refuses new sessions and stops all existing ones

Cancellation is cooperative: the session's flag is checked before each
tick and before each push, and the task itself is cancelled so a push in
progress does not complete.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from smartagri.alerts.clock import SYSTEM_CLOCK, Clock
from smartagri.alerts.errors import StreamRejectedError
from smartagri.alerts.schemas import Alert
from smartagri.alerts.service import AlertService

logger = logging.getLogger(__name__)


class StreamConfig(BaseSettings):
    """Configuration for alert streaming sessions."""

    model_config = SettingsConfigDict(
        env_prefix="STREAMS_",
        case_sensitive=False,
        extra="ignore",
    )

    interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between polling ticks of one session",
    )
    max_sessions: int = Field(
        default=1000,
        ge=1,
        description="Concurrent sessions accepted before new ones are refused",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds shutdown waits for in-flight ticks to finish",
    )


@dataclass(frozen=True)
class StreamFilter:
    """Which active alerts a session receives; no parcel means all."""

    parcel_id: int | None = None


class AlertObserver(ABC):
    """Receiver of a session's alert messages."""

    @abstractmethod
    async def on_next(self, alert: Alert) -> None:
        """Deliver one alert. Raising terminates the session."""

    @abstractmethod
    async def on_error(self, error: Exception) -> None:
        """Terminal failure signal, called at most once per session."""


@dataclass
class StreamSession:
    """Bookkeeping for one streaming consumer."""

    session_id: str
    stream_filter: StreamFilter
    observer: AlertObserver
    started_at: datetime
    client_id: str | None = None
    messages_sent: int = 0
    in_tick: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def mark_cancelled(self) -> bool:
        """Set the cancellation flag; False if it was already set."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "client_id": self.client_id,
            "parcel_id": self.stream_filter.parcel_id,
            "messages_sent": self.messages_sent,
            "started_at": self.started_at.isoformat(),
        }


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class StreamManager:
    """Owns every active stream session, keyed by an opaque session id."""

    def __init__(
        self,
        service: AlertService,
        config: StreamConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._service = service
        self._config = config or StreamConfig()
        self._clock = clock
        self._sessions: dict[str, StreamSession] = {}
        self._accepting = True

    @property
    def active_sessions(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    def sessions(self) -> list[dict[str, Any]]:
        """Diagnostic snapshot of every registered session."""
        return [s.to_dict() for s in self._sessions.values()]

    def get_session(self, session_id: str) -> StreamSession | None:
        return self._sessions.get(session_id)

    def start_stream(
        self,
        stream_filter: StreamFilter,
        observer: AlertObserver,
        client_id: str | None = None,
    ) -> str:
        """Register a session and start its polling task.

        The first tick runs as soon as the task is scheduled.

        Args:
            stream_filter: Which alerts the session receives.
            observer: Receiver for alert messages and the terminal error.
            client_id: Optional client label for diagnostics.

        Returns:
            The new session id.

        Raises:
            StreamRejectedError: After shutdown or at the session limit.
        """
        if not self._accepting:
            raise StreamRejectedError("Alert streaming is shutting down")
        if len(self._sessions) >= self._config.max_sessions:
            raise StreamRejectedError(
                f"Too many active alert streams (max {self._config.max_sessions})"
            )

        session = StreamSession(
            session_id=uuid.uuid4().hex,
            stream_filter=stream_filter,
            observer=observer,
            client_id=client_id,
            started_at=self._clock.now(),
        )
        self._sessions[session.session_id] = session
        session.task = asyncio.create_task(
            self._run(session), name=f"alert-stream-{session.session_id[:8]}",
        )
        logger.info(
            "Alert stream %s started (client=%s, parcel=%s, total=%d)",
            session.session_id, client_id, stream_filter.parcel_id,
            len(self._sessions),
        )
        return session.session_id

    def cancel(self, session_id: str) -> bool:
        """Cancel a session.

        Returns:
            True on the first call for a live session, False afterwards or
            for unknown ids.
        """
        session = self._sessions.pop(session_id, None)
        if session is None or not session.mark_cancelled():
            return False

        task = session.task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        logger.info(
            "Alert stream %s cancelled after %d messages",
            session_id, session.messages_sent,
        )
        return True

    async def shutdown(self) -> None:
        """Stop accepting sessions and stop every existing one.

        Idle sessions are cancelled at once. Sessions in the middle of a
        tick get ``shutdown_grace_seconds`` to finish it before their task
        is cancelled.
        """
        self._accepting = False
        sessions = list(self._sessions.values())
        self._sessions.clear()

        busy: list[asyncio.Task] = []
        for session in sessions:
            session.mark_cancelled()
            task = session.task
            if task is None or task.done():
                continue
            if session.in_tick:
                busy.append(task)
            else:
                task.cancel()

        if busy:
            _, pending = await asyncio.wait(
                busy, timeout=self._config.shutdown_grace_seconds,
            )
            for task in pending:
                task.cancel()

        tasks = [s.task for s in sessions if s.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("StreamManager shut down (%d sessions stopped)", len(sessions))

    async def _run(self, session: StreamSession) -> None:
        """Session loop: tick, then wait one interval, until cancelled."""
        try:
            while not session.cancelled:
                session.in_tick = True
                try:
                    await self._tick(session)
                finally:
                    session.in_tick = False
                if session.cancelled:
                    break
                await self._clock.sleep(self._config.interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(session, e)

    async def _tick(self, session: StreamSession) -> None:
        parcel_id = session.stream_filter.parcel_id
        if parcel_id is not None:
            alerts = await self._service.get_active_alerts_by_parcel(parcel_id)
        else:
            alerts = await self._service.get_active_alerts()

        for alert in alerts:
            if session.cancelled:
                return
            await session.observer.on_next(alert)
            session.messages_sent += 1

    async def _fail(self, session: StreamSession, error: Exception) -> None:
        """Tear down a failed session and signal the observer once."""
        if not session.mark_cancelled():
            return
        self._sessions.pop(session.session_id, None)
        logger.warning("Alert stream %s failed: %s", session.session_id, error)

        try:
            await session.observer.on_error(error)
        except Exception as e:
            logger.warning(
                "Error callback failed for alert stream %s: %s",
                session.session_id, e,
            )
