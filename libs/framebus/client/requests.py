"""Request/reply correlation for discovery pings."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from framebus.client.scheduler import TaskScheduler
from framebus.models.envelope import Envelope

logger = logging.getLogger(__name__)

ReplyCallback = Callable[[Envelope], Any]


@dataclass
class PendingRequest:
    """A sent ping waiting for its first matching pong."""

    message_id: str
    callback: ReplyCallback | None
    deadline: float


class RequestReplyManager:
    """Matches replies to pending requests; expires requests silently.

    A pending request ends either when its first reply arrives or when its
    deadline passes, whichever happens first. The callback runs at most once.
    """

    def __init__(self, scheduler: TaskScheduler, *, default_timeout: float = 5.0) -> None:
        self._scheduler = scheduler
        self._default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._pending

    def register(
        self,
        message_id: str,
        callback: ReplyCallback | None,
        timeout: float | None = None,
    ) -> PendingRequest:
        timeout = self._default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        request = PendingRequest(
            message_id=message_id,
            callback=callback,
            deadline=loop.time() + timeout,
        )
        self._pending[message_id] = request
        self._scheduler.call_later(self._timer_key(message_id), timeout, self._expire, message_id)
        return request

    def resolve(self, reply: Envelope) -> bool:
        """Hand a reply to its pending request. Returns False if nothing was waiting."""
        if reply.reply_to is None:
            return False
        request = self._pending.pop(reply.reply_to, None)
        if request is None:
            return False
        self._scheduler.cancel(self._timer_key(request.message_id))
        logger.debug("Received pong for %s from %s", request.message_id, reply.from_peer)
        if request.callback is not None:
            try:
                result = request.callback(reply)
            except Exception:
                logger.exception("Reply callback for %s failed", request.message_id)
                return True
            if inspect.isawaitable(result):
                self._scheduler.spawn(result, name=f"reply:{request.message_id}")
        return True

    def clear(self) -> None:
        for message_id in self._pending:
            self._scheduler.cancel(self._timer_key(message_id))
        self._pending.clear()

    def _expire(self, message_id: str) -> None:
        # The request may already have been answered
        if self._pending.pop(message_id, None) is not None:
            logger.debug("Ping %s timed out", message_id)

    @staticmethod
    def _timer_key(message_id: str) -> str:
        return f"ping:{message_id}"
