"""Context-aware reminder timing and behavior learning engine."""

__version__ = "0.1.0"
