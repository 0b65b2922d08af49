"""
API endpoints module
"""

from . import waitlist, health

__all__ = [
    "waitlist",
    "health"
]
