"""codementor-sync: per-model tutoring chat history, engagement scoring, and cross-tab sync."""

from .config import load_config
from .core.conversation import ConversationStore
from .core.engagement import EngagementTracker
from .core.session import SessionManager
from .sync.bus import CrossTabSync
from .types import (
    CodementorConfig,
    EngagementAnalytics,
    Message,
    PreservedSession,
    SyncEventType,
)

__version__ = "0.1.0"

__all__ = [
    "ConversationStore",
    "CrossTabSync",
    "EngagementTracker",
    "SessionManager",
    "load_config",
    "CodementorConfig",
    "EngagementAnalytics",
    "Message",
    "PreservedSession",
    "SyncEventType",
]
