"""Background workers."""
from .dispatcher import BackgroundDispatcher, DeadLetter

__all__ = ["BackgroundDispatcher", "DeadLetter"]
