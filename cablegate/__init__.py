"""Building blocks for a real-time WebSocket gateway with an RPC backend."""

__version__ = "1.2.2"