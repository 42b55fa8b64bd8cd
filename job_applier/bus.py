"""In-process message bus between the durable context and ephemeral attachments."""
from __future__ import annotations

import itertools
import threading
from typing import Any, Callable

from job_applier.errors import DeliveryError, ProtocolError
from job_applier.log import get_logger
from job_applier.protocol import Message, decode, encode

log = get_logger(__name__)

RequestHandler = Callable[[Message], Message]
NotificationHandler = Callable[[Message], None]


class MessageBus:
    """Request/response towards the durable side, fire-and-forget towards attachments.

    Payloads are encoded to dicts on send and decoded on receipt so both
    sides only ever see validated messages.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._server: RequestHandler | None = None
        self._attachments: dict[int, NotificationHandler] = {}
        self._ids = itertools.count(1)

    def serve(self, handler: RequestHandler) -> None:
        with self._lock:
            self._server = handler

    def attach(self, handler: NotificationHandler) -> int:
        with self._lock:
            token = next(self._ids)
            self._attachments[token] = handler
        log.debug("Attachment %d registered", token)
        return token

    def detach(self, token: int) -> None:
        with self._lock:
            self._attachments.pop(token, None)
        log.debug("Attachment %d removed", token)

    @property
    def attached(self) -> int:
        return len(self._attachments)

    def request(self, message: Message) -> Message:
        with self._lock:
            server = self._server
        if server is None:
            raise DeliveryError("no durable context is serving requests")
        reply = server(decode(encode(message)))
        return decode(encode(reply))

    def notify(self, message: Message) -> int:
        """Deliver to every attachment; raises DeliveryError if none took it."""
        with self._lock:
            receivers = list(self._attachments.items())
        if not receivers:
            raise DeliveryError(f"{message.type.value}: no context attached")
        wire: dict[str, Any] = encode(message)
        delivered = 0
        for token, handler in receivers:
            try:
                handler(decode(wire))
                delivered += 1
            except ProtocolError:
                raise
            except Exception as exc:
                log.warning("Attachment %d failed to handle %s: %s", token, message.type.value, exc)
        if not delivered:
            raise DeliveryError(f"{message.type.value}: no attachment accepted the message")
        return delivered
