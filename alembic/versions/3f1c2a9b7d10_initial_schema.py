"""initial schema

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-18 09:12:44.310522

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

USER_ROLE = sa.Enum("reader", "staff", "admin", name="user_role")
STAFF_ACTION = sa.Enum(
    "add_book",
    "update_book",
    "update_inventory",
    "retire_book",
    "manage_user",
    "checkout_book",
    "return_book",
    name="staff_action",
)
LOG_TARGET = sa.Enum("book", "user", "system", name="log_target")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False, server_default="reader"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "authors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_authors_name"), "authors", ["name"], unique=False)

    op.create_table(
        "books",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("isbn", sa.String(length=20), nullable=True),
        sa.Column("publisher", sa.String(length=100), nullable=True),
        sa.Column("publication_date", sa.Date(), nullable=True),
        sa.Column("genre", sa.String(length=50), nullable=True),
        sa.Column("language", sa.String(length=30), nullable=False, server_default="English"),
        sa.Column("pages", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("total_copies", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("available_copies", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_ebook", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("cover_image_url", sa.String(length=500), nullable=True),
        sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_reviews", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_borrowed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_copies",
        ),
        sa.CheckConstraint("average_rating >= 0 AND average_rating <= 5", name="ck_books_rating"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("isbn"),
    )
    op.create_index(op.f("ix_books_title"), "books", ["title"], unique=False)
    op.create_index(op.f("ix_books_genre"), "books", ["genre"], unique=False)

    op.create_table(
        "book_authors",
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("author_order", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["authors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("book_id", "author_id"),
    )

    op.create_table(
        "checkouts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column("checkout_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("return_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_returned", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("late_fee", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("staff_checkout_id", sa.Integer(), nullable=True),
        sa.Column("staff_return_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["staff_checkout_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["staff_return_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checkouts_user_book", "checkouts", ["user_id", "book_id"], unique=False)
    op.create_index("ix_checkouts_returned_due", "checkouts", ["is_returned", "due_date"], unique=False)
    op.create_index("ix_checkouts_book_date", "checkouts", ["book_id", "checkout_date"], unique=False)

    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("helpful_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "book_id", name="uq_reviews_user_book"),
    )
    op.create_index("ix_reviews_book_rating", "reviews", ["book_id", "rating"], unique=False)

    op.create_table(
        "staff_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("action_type", STAFF_ACTION, nullable=False),
        sa.Column("target_type", LOG_TARGET, nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("action_description", sa.Text(), nullable=False),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("action_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["staff_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_staff_logs_staff_action", "staff_logs", ["staff_id", "action_type"], unique=False)
    op.create_index("ix_staff_logs_target", "staff_logs", ["target_type", "target_id"], unique=False)
    op.create_index(op.f("ix_staff_logs_action_date"), "staff_logs", ["action_date"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_staff_logs_action_date"), table_name="staff_logs")
    op.drop_index("ix_staff_logs_target", table_name="staff_logs")
    op.drop_index("ix_staff_logs_staff_action", table_name="staff_logs")
    op.drop_table("staff_logs")
    op.drop_index("ix_reviews_book_rating", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("ix_checkouts_book_date", table_name="checkouts")
    op.drop_index("ix_checkouts_returned_due", table_name="checkouts")
    op.drop_index("ix_checkouts_user_book", table_name="checkouts")
    op.drop_table("checkouts")
    op.drop_table("book_authors")
    op.drop_index(op.f("ix_books_genre"), table_name="books")
    op.drop_index(op.f("ix_books_title"), table_name="books")
    op.drop_table("books")
    op.drop_index(op.f("ix_authors_name"), table_name="authors")
    op.drop_table("authors")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in (LOG_TARGET, STAFF_ACTION, USER_ROLE):
        enum_type.drop(bind, checkfirst=True)
