"""Re-export all models so Base.metadata sees them."""

from ideaforge.db.models.idea import Idea

__all__ = [
    "Idea",
]
