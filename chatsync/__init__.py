"""ChatSync - multi-session chat with persisted history and streamed replies."""

__version__ = "1.0.0"
