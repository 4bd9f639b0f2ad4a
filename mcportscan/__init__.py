"""Asynchronous Minecraft server scanner with Discord notifications."""

__version__ = "0.1.0"