"""Envelope model: the wire format for all messages on the bus."""

import time
import uuid
from typing import Any

from pydantic import BaseModel, Field

PROTOCOL_TAG = "framebus"


def new_message_id() -> str:
    """Generate a probabilistically unique message id."""
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


class Envelope(BaseModel):
    """The standard message envelope for the frame bus protocol.

    Several fields map to camelCase names on the wire (`from` is a Python
    reserved keyword). Always serialize with `model_dump(by_alias=True)`
    for wire format.

    `path` is a tuple: an envelope's hop path is never modified in place,
    each hop builds a new envelope with a longer path.
    """

    source: str = PROTOCOL_TAG
    action: str
    payload: Any = Field(default_factory=dict)
    message_id: str = Field(alias="messageId", default_factory=new_message_id)
    from_peer: str = Field(alias="from")
    timestamp: float = Field(default_factory=time.time)
    path: tuple[str, ...] = ()
    reply_to: str | None = Field(default=None, alias="replyTo")
    broadcast: bool = False

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def hops(self) -> int:
        return len(self.path)
