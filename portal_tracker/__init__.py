"""Near-real-time queue and agent activity tracking for an admin portal."""

__version__ = "0.1.0"
