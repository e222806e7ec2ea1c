"""Resolution engine baseline schema.

Revision ID: 20261018_resolution_baseline
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_resolution_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "standard_markets",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("insight", sa.String(length=2048), nullable=True),
        sa.Column("resolution_date", sa.Date(), nullable=False),
        sa.Column("market_structure", sa.String(length=16), nullable=False, server_default="binary"),
        sa.Column("options_json", sa.JSON(), nullable=True),
        sa.Column("yes_percent", sa.Float(), nullable=True),
        sa.Column("no_percent", sa.Float(), nullable=True),
        sa.Column("yes_pool", sa.Float(), nullable=False, server_default="0"),
        sa.Column("no_pool", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_stake_volume", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_no_loss", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("yield_protocol", sa.String(length=32), nullable=True),
        sa.Column("creator_id", sa.String(length=64), nullable=True),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("winning_outcome", sa.String(length=64), nullable=True),
        sa.Column("retry_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_reasoning", sa.String(length=2048), nullable=True),
        sa.Column("ai_confidence", sa.String(length=16), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("retry_attempts >= 0", name="ck_standard_markets_retry_attempts"),
    )
    op.create_index("ix_standard_markets_is_resolved", "standard_markets", ["is_resolved"])
    op.create_index(
        "ix_standard_markets_unresolved_date",
        "standard_markets",
        ["is_resolved", "resolution_date"],
    )

    op.create_table(
        "pledges",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "market_id",
            sa.String(length=64),
            sa.ForeignKey("standard_markets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("pick", sa.String(length=64), nullable=False),
        sa.Column("amount_usd", sa.Float(), nullable=False),
        sa.Column("asset", sa.String(length=16), nullable=False, server_default="USD"),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_winner", sa.Boolean(), nullable=True),
        sa.Column("payout", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount_usd >= 0", name="ck_pledges_amount_non_negative"),
    )
    op.create_index("ix_pledges_user_id", "pledges", ["user_id"])
    op.create_index("ix_pledges_market_unresolved", "pledges", ["market_id", "is_resolved"])

    op.create_table(
        "quick_polls",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("question", sa.String(length=512), nullable=False),
        sa.Column("resolution_hours", sa.Integer(), nullable=True),
        sa.Column("yes_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("no_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("xp_staked_yes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("xp_staked_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("winning_outcome", sa.String(length=16), nullable=True),
        sa.Column("retry_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_reasoning", sa.String(length=2048), nullable=True),
        sa.Column("ai_confidence", sa.String(length=16), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("retry_attempts >= 0", name="ck_quick_polls_retry_attempts"),
    )
    op.create_index("ix_quick_polls_is_resolved", "quick_polls", ["is_resolved"])

    op.create_table(
        "poll_votes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "poll_id",
            sa.String(length=64),
            sa.ForeignKey("quick_polls.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("vote", sa.String(length=8), nullable=False),
        sa.Column("xp_staked", sa.Integer(), nullable=True),
        sa.Column("voted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_winner", sa.Boolean(), nullable=True),
        sa.Column("payout", sa.Integer(), nullable=True),
        sa.UniqueConstraint("poll_id", "user_id", name="uq_poll_votes_poll_user"),
    )
    op.create_index("ix_poll_votes_poll_id", "poll_votes", ["poll_id"])

    op.create_table(
        "quick_play_markets",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("yes_percent", sa.Float(), nullable=True),
        sa.Column("no_percent", sa.Float(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("auto_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("winning_outcome", sa.String(length=16), nullable=True),
        sa.Column("retry_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_reasoning", sa.String(length=2048), nullable=True),
        sa.Column("ai_confidence", sa.String(length=16), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("retry_attempts >= 0", name="ck_quick_play_markets_retry_attempts"),
    )
    op.create_index("ix_quick_play_markets_is_resolved", "quick_play_markets", ["is_resolved"])

    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bnb_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("cake_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "leaderboard",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("leaderboard")
    op.drop_table("profiles")
    op.drop_index("ix_quick_play_markets_is_resolved", table_name="quick_play_markets")
    op.drop_table("quick_play_markets")
    op.drop_index("ix_poll_votes_poll_id", table_name="poll_votes")
    op.drop_table("poll_votes")
    op.drop_index("ix_quick_polls_is_resolved", table_name="quick_polls")
    op.drop_table("quick_polls")
    op.drop_index("ix_pledges_market_unresolved", table_name="pledges")
    op.drop_index("ix_pledges_user_id", table_name="pledges")
    op.drop_table("pledges")
    op.drop_index("ix_standard_markets_unresolved_date", table_name="standard_markets")
    op.drop_index("ix_standard_markets_is_resolved", table_name="standard_markets")
    op.drop_table("standard_markets")
