import asyncio
import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pymongo.errors import PyMongoError

from .. import config, constants
from ..auth import decode_token
from ..errors import ChatError
from .frames import (
    AuthenticatedFrame,
    AuthenticateFrame,
    ErrorFrame,
    FrameError,
    GroupTypingFrame,
    GroupUserTypingFrame,
    JoinConversationFrame,
    JoinGroupFrame,
    LeaveConversationFrame,
    LeaveGroupFrame,
    PingFrame,
    PongFrame,
    TypingFrame,
    UnknownFrame,
    UserPresenceFrame,
    UserTypingFrame,
    parse_client_frame,
)
from .hub import ConnectionHub
from .presence import PresenceTracker
from .rooms import CONVERSATION, GROUP, RoomKey

logger = logging.getLogger(__name__)

router = APIRouter()

# (namespace, room_id, user_id) -> allowed
RoomAuthorizer = Callable[[str, str, str], bool]

CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TOO_BIG = 1009


class FrameTooLarge(Exception):
    pass


class Session:
    """One authenticated websocket connection.

    Producers (hub fan-out, possibly from worker threads) append to a bounded
    buffer; the writer loop is the only consumer and drains it in order.
    """

    def __init__(
        self,
        websocket: Optional[WebSocket],
        user_id: str,
        is_admin: bool = False,
        buffer_size: int = config.WS_SEND_BUFFER,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.is_admin = is_admin
        self.buffer_size = buffer_size
        self.rooms: Set[RoomKey] = set()
        self.closed = False
        self.close_reason: Optional[str] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._buffer: Deque[str] = deque()
        self._buffer_lock = threading.Lock()
        self._wakeup = asyncio.Event()

    def __repr__(self) -> str:
        return f"Session({self.user_id!r}, closed={self.closed})"

    def enqueue(self, text: str) -> bool:
        with self._buffer_lock:
            if self.closed or len(self._buffer) >= self.buffer_size:
                return False
            self._buffer.append(text)
        self._notify()
        return True

    def drain(self) -> List[str]:
        self._wakeup.clear()
        with self._buffer_lock:
            items = list(self._buffer)
            self._buffer.clear()
        return items

    def close(self, reason: str = "closed") -> None:
        with self._buffer_lock:
            if self.closed:
                return
            self.closed = True
            self.close_reason = reason
        self._notify()

    def _notify(self) -> None:
        loop = self.loop
        if loop is None:
            self._wakeup.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._wakeup.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._wakeup.set)

    async def wait_for_output(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class SocketSession:
    """Drives one websocket: handshake, then the reader and writer loops."""

    def __init__(
        self,
        websocket: WebSocket,
        hub: ConnectionHub,
        presence: Optional[PresenceTracker] = None,
        authorize_room: Optional[RoomAuthorizer] = None,
        ping_period: float = config.WS_PING_PERIOD,
        pong_wait: float = config.WS_PONG_WAIT,
        auth_timeout: float = config.WS_AUTH_TIMEOUT,
        max_frame_size: int = config.WS_MAX_FRAME_SIZE,
    ):
        self.websocket = websocket
        self.hub = hub
        self.presence = presence
        self.authorize_room = authorize_room
        self.ping_period = ping_period
        self.pong_wait = pong_wait
        self.auth_timeout = auth_timeout
        self.max_frame_size = max_frame_size
        self.session: Optional[Session] = None
        self._close_code = CLOSE_NORMAL

    async def serve(self) -> None:
        await self.websocket.accept()
        session = await self._handshake()
        if session is None:
            return
        self.session = session
        session.loop = asyncio.get_running_loop()
        self.hub.register(session)
        await self.websocket.send_text(AuthenticatedFrame(user_id=session.user_id).encode())

        reader = asyncio.create_task(self._read_loop(session))
        writer = asyncio.create_task(self._write_loop(session))
        try:
            done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.warning("WS loop for %s ended with %r", session.user_id, task.exception())
        finally:
            self.hub.unregister(session, reason=session.close_reason or "disconnected")
            await self._close(self._close_code, session.close_reason)

    async def _handshake(self) -> Optional[Session]:
        try:
            text = await asyncio.wait_for(self._receive(), timeout=self.auth_timeout)
            frame = parse_client_frame(text)
            if not isinstance(frame, AuthenticateFrame):
                raise FrameError("first frame must be authenticate")
            principal = decode_token(frame.token)
        except WebSocketDisconnect:
            return None
        except asyncio.TimeoutError:
            await self._reject(constants.ERR_WS_AUTH_TIMEOUT)
            return None
        except FrameTooLarge:
            await self._close(CLOSE_TOO_BIG, "frame too large")
            return None
        except FrameError as exc:
            logger.info("WS handshake rejected: %s", exc)
            await self._reject(constants.ERR_WS_AUTH_REQUIRED)
            return None
        except ChatError as exc:
            logger.info("WS handshake rejected: %s", exc.message)
            await self._reject(exc.message)
            return None
        return Session(self.websocket, principal.user_id, principal.is_admin)

    async def _reject(self, message: str) -> None:
        try:
            await self.websocket.send_text(ErrorFrame(message=message).encode())
        except (WebSocketDisconnect, RuntimeError):
            pass
        await self._close(CLOSE_POLICY_VIOLATION, message)

    async def _close(self, code: int, reason: Optional[str] = None) -> None:
        try:
            await self.websocket.close(code=code, reason=reason or "")
        except (RuntimeError, WebSocketDisconnect):
            # already closed by the peer
            pass

    async def _receive(self) -> str:
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", CLOSE_NORMAL))
        text = message.get("text")
        if text is None:
            data = message.get("bytes") or b""
            if len(data) > self.max_frame_size:
                raise FrameTooLarge(len(data))
            return data.decode("utf-8", errors="replace")
        if len(text.encode("utf-8")) > self.max_frame_size:
            raise FrameTooLarge(len(text))
        return text

    async def _read_loop(self, session: Session) -> None:
        while not session.closed:
            try:
                # any inbound frame renews the deadline
                text = await asyncio.wait_for(self._receive(), timeout=self.pong_wait)
            except asyncio.TimeoutError:
                logger.info("WS pong timeout: %s", session.user_id)
                session.close("pong_timeout")
                return
            except FrameTooLarge as exc:
                logger.warning("WS frame too large from %s: %s bytes", session.user_id, exc)
                self._close_code = CLOSE_TOO_BIG
                session.close("frame_too_large")
                return
            except WebSocketDisconnect:
                session.close("disconnected")
                return
            try:
                frame = parse_client_frame(text)
            except FrameError as exc:
                logger.info("WS invalid frame from %s: %s", session.user_id, exc)
                continue
            await self.handle_frame(session, frame)

    async def _write_loop(self, session: Session) -> None:
        ping = PingFrame().encode()
        loop = asyncio.get_running_loop()
        next_ping = loop.time() + self.ping_period
        while True:
            # pings follow a fixed period whatever the outbound traffic
            await session.wait_for_output(max(0.0, next_ping - loop.time()))
            if session.closed:
                return
            for text in session.drain():
                await self.websocket.send_text(text)
            if loop.time() >= next_ping:
                await self.websocket.send_text(ping)
                next_ping = loop.time() + self.ping_period

    async def handle_frame(self, session: Session, frame) -> None:
        if isinstance(frame, JoinConversationFrame):
            await self._join(session, CONVERSATION, frame.conversation_id)
        elif isinstance(frame, LeaveConversationFrame):
            self.hub.leave_room(session, CONVERSATION, frame.conversation_id)
        elif isinstance(frame, JoinGroupFrame):
            await self._join(session, GROUP, frame.group_id)
        elif isinstance(frame, LeaveGroupFrame):
            self.hub.leave_room(session, GROUP, frame.group_id)
        elif isinstance(frame, TypingFrame):
            if frame.conversation_id:
                self.hub.send_to_room(
                    CONVERSATION,
                    frame.conversation_id,
                    UserTypingFrame(
                        conversation_id=frame.conversation_id, user_id=session.user_id, is_typing=frame.is_typing
                    ),
                    exclude=session.user_id,
                )
            elif frame.group_id:
                self._group_typing(session, frame.group_id, frame.is_typing)
        elif isinstance(frame, GroupTypingFrame):
            self._group_typing(session, frame.group_id, frame.is_typing)
        elif isinstance(frame, UserPresenceFrame):
            if self.presence is None:
                return
            if frame.is_online:
                self.presence.heartbeat(session.user_id)
            else:
                self.presence.set_offline(session.user_id)
        elif isinstance(frame, PongFrame):
            pass
        elif isinstance(frame, UnknownFrame):
            logger.info("WS unknown frame type from %s: %s", session.user_id, frame.type)
        else:
            logger.info("WS unexpected frame from %s: %s", session.user_id, frame.type)

    async def _join(self, session: Session, namespace: str, room_id: str) -> None:
        if self.authorize_room is not None:
            # store lookup, run in the threadpool
            try:
                allowed = await run_in_threadpool(self.authorize_room, namespace, room_id, session.user_id)
            except PyMongoError:
                logger.exception("WS join check failed: %s -> %s:%s", session.user_id, namespace, room_id)
                return
            if not allowed:
                logger.info("WS join refused: %s -> %s:%s", session.user_id, namespace, room_id)
                return
        self.hub.join_room(session, namespace, room_id)

    def _group_typing(self, session: Session, group_id: str, is_typing: bool) -> None:
        self.hub.send_to_room(
            GROUP,
            group_id,
            GroupUserTypingFrame(group_id=group_id, user_id=session.user_id, is_typing=is_typing),
            exclude=session.user_id,
        )


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    services = websocket.app.state.services
    await SocketSession(
        websocket,
        services.hub,
        presence=services.presence,
        authorize_room=services.authorize_room,
    ).serve()
