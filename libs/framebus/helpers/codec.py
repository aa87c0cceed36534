"""Factory functions for building, encoding and decoding envelopes."""

import json
from typing import Any

from pydantic import BaseModel, ValidationError

from framebus.errors import ForeignMessage, MalformedPayload
from framebus.models.envelope import PROTOCOL_TAG, Envelope


def create_envelope(
    *,
    action: str,
    payload: BaseModel | Any = None,
    peer_id: str,
    path: tuple[str, ...] | list[str] = (),
    reply_to: str | None = None,
    broadcast: bool = False,
    message_id: str | None = None,
    source: str = PROTOCOL_TAG,
) -> Envelope:
    """Create an Envelope for sending from `peer_id`.

    Args:
        action: The action tag.
        payload: A Pydantic model instance, a plain dict or any JSON value.
        peer_id: The local peer identifier, appended to the hop path.
        path: The hop path received so far (when relaying). Not modified.
        reply_to: Message id of the request being answered.
        broadcast: Mark the message as always answerable (discovery pings).
        message_id: Explicit id; a fresh one is generated when omitted.
        source: Protocol sentinel written into the envelope.

    Returns:
        A fully constructed Envelope whose path ends with `peer_id`.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    elif payload is None:
        payload = {}

    fields: dict[str, Any] = {
        "source": source,
        "action": str(action),
        "payload": payload,
        "from": peer_id,
        "path": (*path, peer_id),
        "reply_to": reply_to,
        "broadcast": broadcast,
    }
    if message_id is not None:
        fields["message_id"] = message_id
    return Envelope(**fields)


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to its JSON wire form."""
    return envelope.model_dump_json(by_alias=True, exclude_none=True)


def decode_envelope(data: str | bytes | dict[str, Any], *, source: str = PROTOCOL_TAG) -> Envelope:
    """Parse raw inbound data into an Envelope.

    Args:
        data: JSON string, bytes, or dict.
        source: The protocol sentinel the data must carry.

    Returns:
        A validated Envelope instance.

    Raises:
        ForeignMessage: If the data is not tagged with our source marker.
        MalformedPayload: If the data is not JSON, or is tagged as ours but
            does not match the Envelope schema.
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        if isinstance(data, str):
            data = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayload(f"Not JSON: {e}") from e

    if not isinstance(data, dict) or data.get("source") != source:
        raise ForeignMessage("Missing protocol source marker")

    try:
        return Envelope.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise MalformedPayload(problems) from e
