import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .. import config
from ..models import utcnow
from .frames import PresenceUpdateFrame
from .hub import ConnectionHub

logger = logging.getLogger(__name__)

PresenceCallback = Callable[[str, bool, datetime], None]


@dataclass
class PresenceEntry:
    online: bool = False
    timer: Optional[asyncio.TimerHandle] = None
    last_heartbeat_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class PresenceTracker:
    """Online flags with an idle timeout.

    Only heartbeats (`user_presence` frames and hub registration) arm the
    per-user timer; each heartbeat cancels and replaces the previous one.
    Every transition is broadcast to all connected users as `presence_update`.
    """

    def __init__(
        self,
        hub: ConnectionHub,
        idle_timeout: float = config.PRESENCE_IDLE_TIMEOUT,
        sweep_interval: float = config.PRESENCE_SWEEP_INTERVAL,
        on_change: Optional[PresenceCallback] = None,
    ):
        self.hub = hub
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self.on_change = on_change
        self.entries: Dict[str, PresenceEntry] = {}
        self.lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sweeper: Optional[asyncio.Task] = None

    # hub listener
    def user_connected(self, user_id: str) -> None:
        self.heartbeat(user_id)

    def user_disconnected(self, user_id: str) -> None:
        self.set_offline(user_id)

    def heartbeat(self, user_id: str) -> None:
        loop = self._loop_for_timers()
        now = utcnow()
        with self.lock:
            entry = self.entries.setdefault(user_id, PresenceEntry())
            fresh = entry.timer is None or not entry.online
            if entry.timer is not None:
                self._cancel(entry.timer)
            entry.online = True
            entry.last_heartbeat_at = now
            entry.last_seen = None
            entry.timer = loop.call_later(self.idle_timeout, self._expire, user_id, now)
        if fresh:
            logger.info("presence online: %s", user_id)
            self._publish(user_id, True, None, now)

    def set_offline(self, user_id: str) -> None:
        now = utcnow()
        with self.lock:
            entry = self.entries.get(user_id)
            if entry is None:
                return
            if entry.timer is not None:
                self._cancel(entry.timer)
                entry.timer = None
            was_online = entry.online
            entry.online = False
            if was_online:
                entry.last_seen = now
        if was_online:
            logger.info("presence offline: %s", user_id)
            self._publish(user_id, False, now, now)

    def _expire(self, user_id: str, armed_at: datetime) -> None:
        now = utcnow()
        with self.lock:
            entry = self.entries.get(user_id)
            # a newer heartbeat already replaced this timer
            if entry is None or entry.timer is None or entry.last_heartbeat_at is not armed_at:
                return
            entry.timer = None
            entry.online = False
            entry.last_seen = now
        logger.info("presence idle timeout: %s", user_id)
        self._publish(user_id, False, now, now)

    def is_online(self, user_id: str) -> bool:
        with self.lock:
            entry = self.entries.get(user_id)
            return bool(entry and entry.online)

    def last_seen(self, user_id: str) -> Optional[datetime]:
        with self.lock:
            entry = self.entries.get(user_id)
            return entry.last_seen if entry else None

    def online_users(self) -> List[str]:
        with self.lock:
            return [user_id for user_id, entry in self.entries.items() if entry.online]

    def sweep(self) -> int:
        with self.lock:
            stale = [
                user_id
                for user_id, entry in self.entries.items()
                if entry.timer is None or entry.timer.cancelled()
            ]
            for user_id in stale:
                del self.entries[user_id]
        if stale:
            logger.debug("presence sweep removed %d entries", len(stale))
        return len(stale)

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = self._loop.create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        now = utcnow()
        with self.lock:
            went_offline = []
            for user_id, entry in self.entries.items():
                if entry.timer is not None:
                    self._cancel(entry.timer)
                    entry.timer = None
                if entry.online:
                    entry.online = False
                    entry.last_seen = now
                    went_offline.append(user_id)
        for user_id in went_offline:
            self._publish(user_id, False, now, now)
        logger.info("presence shutdown: %d users marked offline", len(went_offline))

    def _loop_for_timers(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None:
                raise
            return self._loop

    def _cancel(self, handle: asyncio.TimerHandle) -> None:
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is not None and running is not loop and not loop.is_closed():
            loop.call_soon_threadsafe(handle.cancel)
        else:
            handle.cancel()

    def _publish(self, user_id: str, is_online: bool, last_seen: Optional[datetime], at: datetime) -> None:
        self.hub.broadcast(PresenceUpdateFrame(user_id=user_id, is_online=is_online, last_seen=last_seen))
        if self.on_change is None:
            return
        try:
            self.on_change(user_id, is_online, at)
        except Exception:
            logger.exception("presence callback failed for %s", user_id)
