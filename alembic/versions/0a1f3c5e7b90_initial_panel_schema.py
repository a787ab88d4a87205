"""Initial panel schema

Revision ID: 0a1f3c5e7b90
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1f3c5e7b90"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("prefix", sa.String(10)),
        sa.Column("locale", sa.String(10)),
        sa.Column("timezone", sa.String(64)),
        sa.Column("date_format", sa.String(64)),
        sa.Column("max_feeds", sa.Integer()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "feeds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("text", sa.Text()),
        sa.Column("check_titles", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("check_dates", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("img_previews", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("img_links_existence", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("format_tables", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("toggle_role_mentions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("split_message", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("disabled", sa.String(200)),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_feeds_guild_id", "feeds", ["guild_id"])
    op.create_index("ix_feeds_url", "feeds", ["url"])

    op.create_table(
        "feed_subscribers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "feed_id",
            sa.Integer(),
            sa.ForeignKey("feeds.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("subscriber_id", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint(
            "feed_id", "type", "subscriber_id", name="uq_feed_subscribers_target"
        ),
    )

    op.create_table(
        "general_stats",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("value", sa.BigInteger(), nullable=False, server_default="0"),
        _timestamp("added_at"),
    )

    op.create_table(
        "web_cache",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("type", sa.String(16), primary_key=True),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "web_sessions",
        sa.Column("sid", sa.String(64), primary_key=True),
        sa.Column("identity", postgresql.JSONB()),
        sa.Column("token", postgresql.JSONB()),
        _timestamp("created_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_web_sessions_expires_at", "web_sessions", ["expires_at"])

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])

    op.create_table(
        "rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(128), nullable=False),
        _timestamp("timestamp"),
    )
    op.create_index(
        "ix_rate_limit_key_ts",
        "rate_limit_events",
        ["key", sa.text("timestamp DESC")],
    )


def downgrade() -> None:
    op.drop_index("ix_rate_limit_key_ts", table_name="rate_limit_events")
    op.drop_table("rate_limit_events")
    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_index("ix_web_sessions_expires_at", table_name="web_sessions")
    op.drop_table("web_sessions")
    op.drop_table("web_cache")
    op.drop_table("general_stats")
    op.drop_table("feed_subscribers")
    op.drop_index("ix_feeds_url", table_name="feeds")
    op.drop_index("ix_feeds_guild_id", table_name="feeds")
    op.drop_table("feeds")
    op.drop_table("profiles")
