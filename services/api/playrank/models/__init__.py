"""SQLAlchemy ORM models.

Models represent database tables:
- user_items: a user's items with their 1-based rank position
"""

from playrank.models.user_item import UserItem

__all__ = ["UserItem"]
