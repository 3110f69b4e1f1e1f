"""Multi-agent task queue and coordination core."""

__version__ = "1.0.0"
