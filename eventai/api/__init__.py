"""HTTP routers for the Event AI server."""

from . import events, forecast

__all__ = ["events", "forecast"]
