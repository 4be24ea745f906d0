"""create identities, token_versions and usage_stats tables

Revision ID: 0001
Revises: 
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False, server_default=""),
        sa.Column("account_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("plan_type", sa.String(50), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", "account_id", name="uq_identities_email_account"),
    )
    op.create_index("ix_identities_email", "identities", ["email"])
    op.create_index("ix_identities_account_id", "identities", ["account_id"])
    op.create_index("ix_identities_is_active", "identities", ["is_active"])

    op.create_table(
        "token_versions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_id", sa.Integer(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("id_token", sa.Text(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("openai_api_key", sa.Text(), nullable=True),
        sa.Column("last_refresh", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "identity_id", "version_number", name="uq_token_versions_identity_number",
        ),
    )
    op.create_index("ix_token_versions_identity_id", "token_versions", ["identity_id"])
    op.create_index("ix_token_versions_is_current", "token_versions", ["is_current"])

    op.create_table(
        "usage_stats",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_id", sa.Integer(), nullable=False),
        sa.Column("five_hour_limit_percent", sa.Integer(), nullable=False),
        sa.Column("five_hour_limit_reset_time", sa.DateTime(), nullable=False),
        sa.Column("weekly_limit_percent", sa.Integer(), nullable=False),
        sa.Column("weekly_limit_reset_time", sa.DateTime(), nullable=False),
        sa.Column("captured_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "five_hour_limit_percent BETWEEN 0 AND 100", name="ck_five_hour_percent_range",
        ),
        sa.CheckConstraint(
            "weekly_limit_percent BETWEEN 0 AND 100", name="ck_weekly_percent_range",
        ),
    )
    op.create_index(
        "ix_usage_stats_identity_captured", "usage_stats", ["identity_id", "captured_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_usage_stats_identity_captured", table_name="usage_stats")
    op.drop_table("usage_stats")
    op.drop_index("ix_token_versions_is_current", table_name="token_versions")
    op.drop_index("ix_token_versions_identity_id", table_name="token_versions")
    op.drop_table("token_versions")
    op.drop_index("ix_identities_is_active", table_name="identities")
    op.drop_index("ix_identities_account_id", table_name="identities")
    op.drop_index("ix_identities_email", table_name="identities")
    op.drop_table("identities")
