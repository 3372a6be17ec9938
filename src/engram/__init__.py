"""engram: hybrid keyword + vector memory for coding sessions."""

__version__ = "0.1.0"
