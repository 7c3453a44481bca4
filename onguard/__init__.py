"""OnGuard: real-time scam detection for chat messages."""

__version__ = "0.1.0"
