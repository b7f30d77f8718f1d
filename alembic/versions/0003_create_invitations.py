from alembic import op
import sqlalchemy as sa

revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "invitations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invitation_id", sa.String(), nullable=False),
        sa.Column("booking_id", sa.String(), sa.ForeignKey("bookings.booking_id"), nullable=False),
        sa.Column("cleaner_email", sa.String(), sa.ForeignKey("users.email"), nullable=False),
        sa.Column("client_email", sa.String(), sa.ForeignKey("users.email"), nullable=False),
        sa.Column("booking_details", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_invitations_invitation_id", "invitations", ["invitation_id"], unique=True)
    op.create_index("ix_invitations_booking_id", "invitations", ["booking_id"], unique=False)
    op.create_index("ix_invitations_cleaner_email", "invitations", ["cleaner_email"], unique=False)
    op.create_index("ix_invitations_client_email", "invitations", ["client_email"], unique=False)
    op.create_index("ix_invitations_status", "invitations", ["status"], unique=False)
    op.create_index("ix_invitations_expires_at", "invitations", ["expires_at"], unique=False)

def downgrade():
    op.drop_index("ix_invitations_expires_at", table_name="invitations")
    op.drop_index("ix_invitations_status", table_name="invitations")
    op.drop_index("ix_invitations_client_email", table_name="invitations")
    op.drop_index("ix_invitations_cleaner_email", table_name="invitations")
    op.drop_index("ix_invitations_booking_id", table_name="invitations")
    op.drop_index("ix_invitations_invitation_id", table_name="invitations")
    op.drop_table("invitations")
