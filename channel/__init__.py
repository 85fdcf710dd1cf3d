"""
Websocket channel for pointstream.

Defines the wire envelopes exchanged between viewer and server and the
server-side session manager that answers them.
"""

from .manager import ServerSession, WebSocketManager
from .messages import (
    PROTOCOL_VERSION,
    MessageType,
    ProtocolError,
    parse_client_message,
    parse_server_message,
)

__all__ = [
    "PROTOCOL_VERSION",
    "MessageType",
    "ProtocolError",
    "ServerSession",
    "WebSocketManager",
    "parse_client_message",
    "parse_server_message",
]
