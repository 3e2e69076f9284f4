"""Initial schema: drivers, share groups, rides, participants, wallets, holds, transactions"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "drivers",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("approval_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_busy", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_approval", "drivers", ["approval_status"])
    op.create_index("idx_drivers_status", "drivers", ["status"])
    op.create_index("idx_drivers_online", "drivers", ["is_online"])
    op.create_index("idx_drivers_lat_lng", "drivers", ["lat", "lng"])

    op.create_table(
        "share_groups",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="OPEN"),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="2"),
        sa.Column("ride_id", sa.String, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_share_groups_status_created", "share_groups", ["status", "created_at"])
    op.create_index("idx_share_groups_ride", "share_groups", ["ride_id"])

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("booked_for_name", sa.String(255), nullable=True),
        sa.Column("booked_for_phone", sa.String(20), nullable=True),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("share_group_id", sa.String, sa.ForeignKey("share_groups.id"), nullable=True),
        sa.Column("pickup_address", sa.String(500), nullable=False),
        sa.Column("dropoff_address", sa.String(500), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("fare_estimate", sa.BigInteger, nullable=False),
        sa.Column("mode", sa.String(10), nullable=False, server_default="PRIVATE"),
        sa.Column("max_passengers", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(30), nullable=False, server_default="REQUESTED"),
        sa.Column("status_history", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_share_group", "rides", ["share_group_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])

    op.create_table(
        "share_participants",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("group_id", sa.String, sa.ForeignKey("share_groups.id"), nullable=False),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("booked_for_name", sa.String(255), nullable=True),
        sa.Column("pickup_address", sa.String(500), nullable=False),
        sa.Column("dropoff_address", sa.String(500), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("requested_fare", sa.BigInteger, nullable=False),
        sa.Column("fare_share_amount", sa.BigInteger, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_share_participants_group", "share_participants", ["group_id"])
    op.create_index("idx_share_participants_rider", "share_participants", ["rider_id"])
    op.create_index(
        "idx_share_participants_pickup", "share_participants", ["pickup_lat", "pickup_lng"]
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("owner_id", sa.String, nullable=False),
        sa.Column("owner_type", sa.String(20), nullable=False),
        sa.Column("balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("locked_balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(5), nullable=False, server_default="INR"),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("owner_id", "owner_type", name="uq_wallet_owner"),
        sa.CheckConstraint("locked_balance >= 0", name="ck_wallet_locked_non_negative"),
        sa.CheckConstraint("balance >= locked_balance", name="ck_wallet_locked_covered"),
    )

    op.create_table(
        "wallet_holds",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("wallet_id", sa.String, sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("reference", sa.String(255), nullable=False),
        sa.Column("ride_id", sa.String, nullable=True),
        sa.Column("participant_id", sa.String, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="HELD"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_wallet_holds_wallet", "wallet_holds", ["wallet_id"])
    op.create_index("idx_wallet_holds_ride", "wallet_holds", ["ride_id"])
    op.create_index("idx_wallet_holds_participant", "wallet_holds", ["participant_id"])
    op.create_index("idx_wallet_holds_status", "wallet_holds", ["status"])

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("wallet_id", sa.String, sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("reference", sa.String(255), unique=True, nullable=False),
        sa.Column("hold_id", sa.String, nullable=True),
        sa.Column("ride_id", sa.String, nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_wallet_txn_wallet", "wallet_transactions", ["wallet_id"])
    op.create_index("idx_wallet_txn_ride", "wallet_transactions", ["ride_id"])
    op.create_index("idx_wallet_txn_hold", "wallet_transactions", ["hold_id"])
    op.create_index("idx_wallet_txn_created", "wallet_transactions", ["created_at"])


def downgrade() -> None:
    op.drop_table("wallet_transactions")
    op.drop_table("wallet_holds")
    op.drop_table("wallets")
    op.drop_table("share_participants")
    op.drop_table("rides")
    op.drop_table("share_groups")
    op.drop_table("drivers")
