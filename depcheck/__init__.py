"""depcheck - artifact identity evidence for known-vulnerability detection."""

__version__ = "0.1.0"
