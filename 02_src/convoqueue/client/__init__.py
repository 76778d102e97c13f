"""Client-side reconciliation."""

from .store import ChatStore, IClientTransport, TimelineMessage
from .transport import WebSocketChatClient

__all__ = ["ChatStore", "IClientTransport", "TimelineMessage", "WebSocketChatClient"]
