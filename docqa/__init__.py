"""docqa: ask questions answered only from your uploaded documents."""

__version__ = "0.1.0"
