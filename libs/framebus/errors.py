"""Exception types and drop reasons for the frame bus."""

from enum import StrEnum


class FrameBusError(Exception):
    """Base class for all frame bus errors."""


class DecodeError(FrameBusError, ValueError):
    """Raw inbound data could not be turned into an Envelope."""


class MalformedPayload(DecodeError):
    """The data claims to be ours but is not a well-formed envelope."""


class ForeignMessage(DecodeError):
    """The data is not frame bus traffic (missing or wrong source marker)."""


class TransportUnavailable(FrameBusError):
    """A channel could not deliver to one specific target."""


class DropReason(StrEnum):
    """Why an envelope was not sent or not dispatched."""

    UNTRUSTED_ORIGIN = "untrusted_origin"
    MALFORMED_PAYLOAD = "malformed_payload"
    FOREIGN = "foreign"
    DUPLICATE = "duplicate"
    LOOP_DETECTED = "loop_detected"
    ECHO = "echo"
    RATE_LIMITED = "rate_limited"
