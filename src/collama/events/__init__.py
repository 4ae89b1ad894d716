"""Event bus for decoupling the client and agent from presentation."""

from collama.events.bus import EventBus

__all__ = ["EventBus"]
