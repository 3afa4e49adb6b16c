"""Create hotel loyalty program, member, ledger, and reward tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_ENUMS = {
    "loyalty_ledger_entry_type": ("EARNED", "ADJUSTED", "REDEEMED", "EXPIRED"),
    "loyalty_point_lot_status": ("OPEN", "CONSUMED", "EXPIRED"),
    "loyalty_reward_category": ("DISCOUNT", "UPGRADE", "AMENITY", "SERVICE", "VOUCHER", "EXPERIENCE"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enum types if they don't exist
    for name, values in _ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$ BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END $$;
        """)

    op.create_table(
        "loyalty_programs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("hotel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("points_per_dollar", sa.Numeric(10, 4), nullable=False, server_default="1"),
        sa.Column("points_per_night", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("service_multipliers", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("points_to_money_ratio", sa.Numeric(10, 4), nullable=False, server_default="100"),
        sa.Column("minimum_redemption", sa.Integer(), nullable=False, server_default="500"),
        sa.Column("maximum_redemption", sa.Integer(), nullable=True),
        sa.Column("expiration_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_points_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_expired", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("hotel_id", name="uq_loyalty_programs_hotel_id"),
    )
    op.create_index("ix_loyalty_programs_hotel_id", "loyalty_programs", ["hotel_id"])

    op.create_table(
        "loyalty_tiers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "program_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_programs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("min_points", sa.Integer(), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("benefits", sa.JSON(), nullable=False, server_default=sa.text("'[]'::json")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("program_id", "name", name="uq_loyalty_tiers_program_name"),
    )

    op.create_table(
        "loyalty_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("hotel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("guest_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("guest_first_name", sa.String(), nullable=True),
        sa.Column("guest_last_name", sa.String(), nullable=True),
        sa.Column("guest_email", sa.String(), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points_expired", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_tier", sa.String(), nullable=True),
        sa.Column("next_tier_name", sa.String(), nullable=True),
        sa.Column("points_to_next_tier", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_percentage", sa.Numeric(5, 1), nullable=False, server_default="0"),
        sa.Column("lifetime_spending", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_nights_stayed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("join_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("hotel_id", "guest_id", name="uq_loyalty_members_hotel_guest"),
    )
    op.create_index("ix_loyalty_members_hotel_id", "loyalty_members", ["hotel_id"])
    op.create_index("ix_loyalty_members_guest_id", "loyalty_members", ["guest_id"])

    op.create_table(
        "loyalty_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_type", _enum("loyalty_ledger_entry_type"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("booking_reference", sa.String(), nullable=True),
        sa.Column("spend_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_loyalty_ledger_entries_member_occurred",
        "loyalty_ledger_entries",
        ["member_id", "occurred_at"],
    )

    op.create_table(
        "loyalty_point_lots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "ledger_entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_ledger_entries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("consumed_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expired_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", _enum("loyalty_point_lot_status"), nullable=False, server_default="OPEN"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_loyalty_point_lots_member_issued", "loyalty_point_lots", ["member_id", "issued_at"])
    op.create_index("ix_loyalty_point_lots_status_expires", "loyalty_point_lots", ["status", "expires_at"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("hotel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", _enum("loyalty_reward_category"), nullable=False, server_default="AMENITY"),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("required_tier", sa.String(), nullable=True),
        sa.Column("validity_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("times_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_value_redeemed", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("available_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terms_and_conditions", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_loyalty_rewards_hotel_id", "loyalty_rewards", ["hotel_id"])
    op.create_index("ix_loyalty_rewards_hotel_active", "loyalty_rewards", ["hotel_id", "is_active"])

    op.create_table(
        "loyalty_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reward_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("loyalty_rewards.id"), nullable=True),
        sa.Column("reward_name", sa.String(), nullable=False),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("value_redeemed", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "loyalty_tier_changes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("old_tier", sa.String(), nullable=True),
        sa.Column("new_tier", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )


def downgrade() -> None:
    op.drop_table("loyalty_tier_changes")
    op.drop_table("loyalty_redemptions")
    op.drop_index("ix_loyalty_rewards_hotel_active", table_name="loyalty_rewards")
    op.drop_index("ix_loyalty_rewards_hotel_id", table_name="loyalty_rewards")
    op.drop_table("loyalty_rewards")
    op.drop_index("ix_loyalty_point_lots_status_expires", table_name="loyalty_point_lots")
    op.drop_index("ix_loyalty_point_lots_member_issued", table_name="loyalty_point_lots")
    op.drop_table("loyalty_point_lots")
    op.drop_index("ix_loyalty_ledger_entries_member_occurred", table_name="loyalty_ledger_entries")
    op.drop_table("loyalty_ledger_entries")
    op.drop_index("ix_loyalty_members_guest_id", table_name="loyalty_members")
    op.drop_index("ix_loyalty_members_hotel_id", table_name="loyalty_members")
    op.drop_table("loyalty_members")
    op.drop_table("loyalty_tiers")
    op.drop_index("ix_loyalty_programs_hotel_id", table_name="loyalty_programs")
    op.drop_table("loyalty_programs")

    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
