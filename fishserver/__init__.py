"""Multiplayer fish-shooting game server with a WebSocket hub and an admin API."""

__version__ = "0.1.0"