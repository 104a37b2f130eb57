"""
Flood Monitor - per-session sliding-window message counter.

Best-effort, ephemeral state behind a small ``FloodStore`` interface:
``InMemoryFloodStore`` (default, lock-guarded) or ``RedisFloodStore``
(sorted sets with key expiry, shared between processes).

The window check runs inside the synchronous guardrail chain; idle sessions
are pruned by ``FloodMonitor.run_sweeper``, an asyncio task owned by the
application lifespan.
"""
import asyncio
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import redis

from steambot.core.config import settings
from steambot.core.logging import get_logger

logger = get_logger(__name__)

FLOOD_DETECTED = "flood_detected"
FLOOD_MESSAGE = (
    "You're sending messages very quickly. Please wait a minute and try again, "
    "and I'll be happy to help!"
)


@dataclass
class FloodResult:
    blocked: bool
    reason: str | None = None
    message: str | None = None
    count: int = 0


class FloodStore(ABC):
    """Storage for per-session message timestamps"""

    @abstractmethod
    def record(self, session_id: str, now: float, window_seconds: float) -> int:
        """Append ``now``, drop timestamps outside the window, return the count inside it"""

    @abstractmethod
    def sweep(self, now: float, idle_seconds: float) -> int:
        """Forget sessions with no timestamp newer than ``now - idle_seconds``"""

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryFloodStore(FloodStore):
    """Process-local store; a single lock guards every read-modify-write"""

    def __init__(self) -> None:
        self._sessions: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def record(self, session_id: str, now: float, window_seconds: float) -> int:
        cutoff = now - window_seconds
        with self._lock:
            timestamps = [ts for ts in self._sessions.get(session_id, ()) if ts > cutoff]
            timestamps.append(now)
            self._sessions[session_id] = timestamps
            return len(timestamps)

    def sweep(self, now: float, idle_seconds: float) -> int:
        cutoff = now - idle_seconds
        with self._lock:
            stale = [
                session_id
                for session_id, timestamps in self._sessions.items()
                if not timestamps or timestamps[-1] <= cutoff
            ]
            for session_id in stale:
                del self._sessions[session_id]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


class RedisFloodStore(FloodStore):
    """Shared store: one sorted set per session, scored by timestamp"""

    KEY_PREFIX = "steambot:flood:"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def record(self, session_id: str, now: float, window_seconds: float) -> int:
        key = self._key(session_id)
        member = f"{now:.6f}-{uuid.uuid4().hex[:8]}"
        pipe = self._client.pipeline()
        pipe.zadd(key, {member: now})
        pipe.zremrangebyscore(key, "-inf", now - window_seconds)
        pipe.zcard(key)
        # idle sessions disappear after two windows without a sweep
        pipe.expire(key, int(window_seconds * 2))
        _, _, count, _ = pipe.execute()
        return int(count)

    def sweep(self, now: float, idle_seconds: float) -> int:
        return 0

    def clear(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self.KEY_PREFIX}*"))
        if keys:
            self._client.delete(*keys)


class FloodMonitor:
    """Sliding-window flood detection with a bounded-lifetime sweep task"""

    def __init__(
        self,
        store: FloodStore | None = None,
        window_seconds: float | None = None,
        max_messages: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or InMemoryFloodStore()
        self.window_seconds = window_seconds or settings.FLOOD_WINDOW_SECONDS
        self.max_messages = max_messages or settings.FLOOD_MAX_MESSAGES
        self._clock = clock
        self._sweeper: asyncio.Task | None = None

    def check_flood(self, session_id: str) -> FloodResult:
        """
        Record one message for ``session_id`` and decide whether it is a flood.

        The timestamp is recorded even when blocked, so sustained abuse keeps
        the window full until traffic drops.
        """
        count = self.store.record(session_id, self._clock(), self.window_seconds)
        if count > self.max_messages:
            return FloodResult(
                blocked=True,
                reason=FLOOD_DETECTED,
                message=FLOOD_MESSAGE,
                count=count,
            )
        return FloodResult(blocked=False, count=count)

    def sweep(self) -> int:
        removed = self.store.sweep(self._clock(), self.window_seconds * 2)
        if removed:
            logger.debug(
                "Flood monitor swept idle sessions",
                extra_data={"removed": removed}
            )
        return removed

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever on a fixed interval; cancelled on shutdown"""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except redis.RedisError as e:
                logger.warning(
                    "Flood sweep failed",
                    extra_data={"error": type(e).__name__}
                )

    def start_sweeper(self, interval_seconds: float | None = None) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self.run_sweeper(interval_seconds or settings.FLOOD_SWEEP_INTERVAL_SECONDS)
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


_flood_monitor: FloodMonitor | None = None
_monitor_lock = threading.Lock()


def _build_store() -> FloodStore:
    if settings.FLOOD_BACKEND == "redis":
        from steambot.core.redis_client import get_redis

        return RedisFloodStore(get_redis())
    return InMemoryFloodStore()


def get_flood_monitor() -> FloodMonitor:
    """Process-wide monitor built from settings on first use"""
    global _flood_monitor
    if _flood_monitor is None:
        with _monitor_lock:
            if _flood_monitor is None:
                _flood_monitor = FloodMonitor(store=_build_store())
                logger.info(
                    "Flood monitor initialized",
                    extra_data={
                        "backend": settings.FLOOD_BACKEND,
                        "window_seconds": settings.FLOOD_WINDOW_SECONDS,
                        "max_messages": settings.FLOOD_MAX_MESSAGES,
                    }
                )
    return _flood_monitor


def set_flood_monitor(monitor: FloodMonitor | None) -> None:
    """Replace the process-wide monitor (tests, alternative stores)"""
    global _flood_monitor
    with _monitor_lock:
        _flood_monitor = monitor
