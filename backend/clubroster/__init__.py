"""Club roster and event assignment engine."""

__version__ = "0.1.0"
