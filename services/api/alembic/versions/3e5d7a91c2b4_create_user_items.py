"""create_user_items

Revision ID: 3e5d7a91c2b4
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3e5d7a91c2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("cover_url", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(length=100), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "item_id", name="uq_user_items_user_item"),
    )

    op.create_index(op.f("ix_user_items_user_id"), "user_items", ["user_id"], unique=False)
    # No unique (user_id, position): point-write shifts pass through transient duplicates.
    op.create_index("ix_user_items_user_position", "user_items", ["user_id", "position"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_user_items_user_position", table_name="user_items")
    op.drop_index(op.f("ix_user_items_user_id"), table_name="user_items")
    op.drop_table("user_items")
