"""Oracle active load monitor."""

__version__ = "1.0.0"
