"""User item model.

One row per (user, item) pair. `position` is the 1-based rank within the
user's list (1 = most preferred). NULL means the item belongs to the user
but is currently unranked (between clearing and re-placing during a rebuild).

Positions are kept contiguous by the shift protocol, not by a constraint:
a unique (user_id, position) index would reject the transient duplicates
that point-write shifting is allowed to produce.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from playrank.stores.postgres import Base


class UserItem(Base):
    """A ranked (or temporarily unranked) item in a user's list."""

    __tablename__ = "user_items"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_user_items_user_item"),
        Index("ix_user_items_user_position", "user_id", "position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[str] = mapped_column(String(64), index=True)
    item_id: Mapped[str] = mapped_column(String(100))

    # Display info for comparisons
    title: Mapped[str] = mapped_column(String(300), default="")
    cover_url: Mapped[str | None] = mapped_column(Text)
    external_id: Mapped[str | None] = mapped_column(String(100))  # e.g. RAWG id

    position: Mapped[int | None] = mapped_column()

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<UserItem {self.user_id}/{self.item_id} #{self.position}>"
