"""Worker bridge between the AI Horde text queue and a local inference backend."""

__version__ = "0.1.0"

__all__ = ["__version__"]
