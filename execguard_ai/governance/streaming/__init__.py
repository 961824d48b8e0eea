"""Progress stream: event fan-out and control command intake."""

from .models import ControlCommand, ControlCommandType, StreamEvent, StreamEventType
from .stream import PollingSubscription, ProgressBus, ProgressStream, PushSubscription, Subscription

__all__ = [
    "ControlCommand",
    "ControlCommandType",
    "PollingSubscription",
    "ProgressBus",
    "ProgressStream",
    "PushSubscription",
    "StreamEvent",
    "StreamEventType",
    "Subscription",
]
