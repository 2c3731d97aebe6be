"""Initial schema: users, sessions, vehicles, shared trips and bookings.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ROLE = sa.Enum("admin", "staff", "customer", name="role")
VEHICLE_CATEGORY = sa.Enum("car", "van", "bus", "truck", name="vehicle_category")
VEHICLE_STATUS = sa.Enum(
    "available", "in_use", "maintenance", "unavailable", name="vehicle_status"
)
DRIVE_TYPE = sa.Enum("self", "driver", name="drive_type")
BOOKING_STATUS = sa.Enum(
    "pending",
    "approved",
    "rejected",
    "in_progress",
    "completed",
    "cancelled",
    name="booking_status",
)
SHARED_TRIP_STATUS = sa.Enum(
    "open", "full", "in_progress", "completed", "cancelled", name="shared_trip_status"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(80), unique=True, nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("department", sa.String(120), nullable=True),
        sa.Column("role", ROLE, nullable=False, server_default="customer"),
        sa.Column("permissions", sa.JSON, nullable=False),
        sa.Column("is_approver", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_driver", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_session_id", sa.String(128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── sessions ──────────────────────────────────────────────────────
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_sessions_user", "sessions", ["user_id"])

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("make", sa.String(80), nullable=False),
        sa.Column("model", sa.String(80), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("license_plate", sa.String(32), unique=True, nullable=False),
        sa.Column("category", VEHICLE_CATEGORY, nullable=False, server_default="car"),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="5"),
        sa.Column("current_mileage", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "status", VEHICLE_STATUS, nullable=False, server_default="available"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_vehicles_status", "vehicles", ["status"])

    # ── shared_trips ──────────────────────────────────────────────────
    op.create_table(
        "shared_trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column(
            "approver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("destination", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "status", SHARED_TRIP_STATUS, nullable=False, server_default="open"
        ),
        sa.Column("total_capacity", sa.Integer, nullable=False),
        sa.Column("reserved_seats", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_shared_trips_status", "shared_trips", ["status"])
    op.create_index("idx_shared_trips_vehicle", "shared_trips", ["vehicle_id"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "approver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("drive_type", DRIVE_TYPE, nullable=False, server_default="self"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status", BOOKING_STATUS, nullable=False, server_default="pending"
        ),
        sa.Column("purpose", sa.Text, nullable=False),
        sa.Column("destination", sa.String(255), nullable=True),
        sa.Column("mileage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("start_odometer", sa.Integer, nullable=True),
        sa.Column("end_odometer", sa.Integer, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("passenger_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("passenger_name", sa.String(120), nullable=True),
        sa.Column("passenger_phone", sa.String(40), nullable=True),
        sa.Column(
            "share_allowed", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "shared_trip_id",
            sa.Integer,
            sa.ForeignKey("shared_trips.id"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_vehicle", "bookings", ["vehicle_id"])
    op.create_index("idx_bookings_user", "bookings", ["user_id"])
    op.create_index("idx_bookings_shared_trip", "bookings", ["shared_trip_id"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("shared_trips")
    op.drop_table("vehicles")
    op.drop_table("sessions")
    op.drop_table("users")
    for name in (
        "shared_trip_status",
        "booking_status",
        "drive_type",
        "vehicle_status",
        "vehicle_category",
        "role",
    ):
        op.execute(f"DROP TYPE IF EXISTS {name}")
