"""
Transport Layer for Parley.

A duplex websocket channel that reconnects with exponential backoff and
fans inbound frames out to listeners by type.
"""

from .protocol import Connection, Connector, TransportState, websockets_connector
from .reconnecting import Listener, ReconnectingTransport

__all__ = [
    "Connection",
    "Connector",
    "Listener",
    "ReconnectingTransport",
    "TransportState",
    "websockets_connector",
]
