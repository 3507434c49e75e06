"""tablesnipe: reservation sniper with a persistent snipe queue."""

__version__ = "0.1.0"
