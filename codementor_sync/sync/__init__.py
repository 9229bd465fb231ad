from .bus import (
    DEFAULT_CHANNEL,
    CrossTabSync,
    EngagementSync,
    ProgressSync,
    SessionSync,
    TabFocusSync,
)
from .transport import (
    BroadcastTransport,
    LocalBroadcastHub,
    TransportUnavailable,
    default_hub,
    unavailable_transport,
)

__all__ = [
    "DEFAULT_CHANNEL",
    "BroadcastTransport",
    "CrossTabSync",
    "EngagementSync",
    "LocalBroadcastHub",
    "ProgressSync",
    "SessionSync",
    "TabFocusSync",
    "TransportUnavailable",
    "default_hub",
    "unavailable_transport",
]
