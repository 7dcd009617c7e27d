"""Trust Graph Explorer."""

__version__ = "0.1.0"
