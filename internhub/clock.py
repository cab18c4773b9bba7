"""
Request clock. Every date-window rule takes "now" from here so tests can
pin it with a dependency override.
"""
from datetime import datetime


def get_now() -> datetime:
    """Naive UTC, like every stored timestamp."""
    return datetime.utcnow()
