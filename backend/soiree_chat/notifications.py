import logging
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from . import config
from .realtime.frames import Payload
from .realtime.hub import ConnectionHub
from .repositories.users import TokenRepository

logger = logging.getLogger(__name__)

PushResult = Tuple[int, int, List[str]]


class PushSink(Protocol):
    """Push transport provided by the outer application."""

    def send_to_all(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> PushResult: ...


class DisabledPushSink:
    def send_to_all(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> PushResult:
        logger.debug("push disabled, dropping %d tokens (%s)", len(tokens), data.get("type"))
        return 0, 0, []


def truncate_body(text: str, limit: int = config.PUSH_BODY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def batched(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class NotificationFanout:
    """Delivers chat events to live sockets and to the push sink.

    Nothing here raises: a failed delivery is logged and dropped once the
    triggering state change has been committed.
    """

    def __init__(
        self,
        hub: ConnectionHub,
        tokens: TokenRepository,
        sink: Optional[PushSink] = None,
        batch_size: int = config.PUSH_BATCH_SIZE,
    ):
        self.hub = hub
        self.tokens = tokens
        self.sink = sink or DisabledPushSink()
        self.batch_size = batch_size

    def to_user(self, user_id: str, payload: Payload) -> bool:
        try:
            return self.hub.send_to_user(user_id, payload)
        except Exception:
            logger.exception("live delivery to %s failed", user_id)
            return False

    def to_users(self, user_ids: Iterable[str], payload: Payload, exclude: Optional[str] = None) -> int:
        try:
            return self.hub.send_to_users(user_ids, payload, exclude=exclude)
        except Exception:
            logger.exception("live fan-out failed")
            return 0

    def to_room(self, namespace: str, room_id: str, payload: Payload, exclude: Optional[str] = None) -> int:
        try:
            return self.hub.send_to_room(namespace, room_id, payload, exclude=exclude)
        except Exception:
            logger.exception("room fan-out to %s:%s failed", namespace, room_id)
            return 0

    def push(self, user_ids: Iterable[str], title: str, body: str, data: Dict[str, object]) -> Tuple[int, int]:
        recipients = [u for u in dict.fromkeys(user_ids) if u]
        if not recipients:
            return 0, 0
        try:
            tokens = self.tokens.tokens_for_users(recipients)
        except Exception:
            logger.exception("loading push tokens failed")
            return 0, 0
        if not tokens:
            logger.debug("no push tokens for %s", recipients)
            return 0, 0

        payload = {key: "" if value is None else str(value) for key, value in data.items()}
        success = failure = 0
        invalid: List[str] = []
        for batch in batched(tokens, self.batch_size):
            try:
                ok, failed, failed_tokens = self.sink.send_to_all(batch, title, body, payload)
            except Exception:
                logger.exception("push batch of %d tokens failed", len(batch))
                failure += len(batch)
                continue
            success += ok
            failure += failed
            invalid.extend(failed_tokens or [])

        if invalid:
            try:
                removed = self.tokens.delete_tokens(invalid)
                logger.info("pruned %d invalid push tokens", removed)
            except Exception:
                logger.exception("pruning push tokens failed")
        logger.info("push %s: %d sent, %d failed", payload.get("type", "?"), success, failure)
        return success, failure
