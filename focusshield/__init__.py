"""FocusShield: scheduled app blocking with focus time tracking."""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main", "__version__"]
