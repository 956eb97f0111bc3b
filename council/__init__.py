"""Client for watching and posting to shared Council sessions."""

__version__ = "0.1.0"
