"""tasknest - client-side hierarchical task lists with optimistic sync."""

__version__ = "0.1.0"
