from framebus.client.bus import MessageBus, ReceiveHandler, SendOptions
from framebus.client.nats_store import NatsKeyValueStore
from framebus.client.requests import PendingRequest, ReplyCallback, RequestReplyManager
from framebus.client.scheduler import TaskScheduler

__all__ = [
    "MessageBus",
    "NatsKeyValueStore",
    "PendingRequest",
    "ReceiveHandler",
    "ReplyCallback",
    "RequestReplyManager",
    "SendOptions",
    "TaskScheduler",
]
