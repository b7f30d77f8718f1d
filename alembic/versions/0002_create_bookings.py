from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("client_email", sa.String(), sa.ForeignKey("users.email"), nullable=False),
        sa.Column("service_type", sa.String(), nullable=False),
        sa.Column("schedule_date", sa.Date(), nullable=False),
        sa.Column("schedule_time", sa.String(), nullable=False),
        sa.Column("frequency", sa.String(), nullable=False, server_default="once"),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("property_type", sa.String(), nullable=False),
        sa.Column("bedrooms", sa.Integer(), nullable=False),
        sa.Column("bathrooms", sa.Integer(), nullable=False),
        sa.Column("square_footage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("special_instructions", sa.String(), nullable=True),
        sa.Column("extras", sa.JSON(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_cleaner_email", sa.String(), sa.ForeignKey("users.email"), nullable=True),
        sa.Column("client_notes", sa.String(), nullable=True),
        sa.Column("cleaner_notes", sa.String(), nullable=True),
        sa.Column("invitation_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_bookings_booking_id", "bookings", ["booking_id"], unique=True)
    op.create_index("ix_bookings_client_email", "bookings", ["client_email"], unique=False)
    op.create_index("ix_bookings_city", "bookings", ["city"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_assigned_cleaner_email", "bookings", ["assigned_cleaner_email"], unique=False)
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"], unique=False)

    op.create_table(
        "booking_applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_pk", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("cleaner_email", sa.String(), sa.ForeignKey("users.email"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("proposed_price", sa.Integer(), nullable=False),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("booking_pk", "cleaner_email", name="uq_application_booking_cleaner"),
    )
    op.create_index("ix_booking_applications_booking_pk", "booking_applications", ["booking_pk"], unique=False)
    op.create_index("ix_booking_applications_cleaner_email", "booking_applications", ["cleaner_email"], unique=False)

def downgrade():
    op.drop_index("ix_booking_applications_cleaner_email", table_name="booking_applications")
    op.drop_index("ix_booking_applications_booking_pk", table_name="booking_applications")
    op.drop_table("booking_applications")

    op.drop_index("ix_bookings_created_at", table_name="bookings")
    op.drop_index("ix_bookings_assigned_cleaner_email", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_city", table_name="bookings")
    op.drop_index("ix_bookings_client_email", table_name="bookings")
    op.drop_index("ix_bookings_booking_id", table_name="bookings")
    op.drop_table("bookings")
