"""Real-time voice sales-pitch role-play server."""

__version__ = "0.1.0"
