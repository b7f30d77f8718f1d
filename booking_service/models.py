from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything is stored in UTC
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


class UserType:
    CLIENT = "client"
    CLEANER = "cleaner"


class BookingStatus:
    PENDING_CLEANER = "pending-cleaner"
    PENDING = "pending"  # legacy alias of pending-cleaner
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class ApplicationStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class InvitationStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    user_type = Column(String, nullable=False, index=True)  # client/cleaner

    is_available = Column(Boolean, nullable=False, default=True)
    rating = Column(Float, nullable=False, default=5.0)
    completed_jobs = Column(Integer, nullable=False, default=0)
    bookings_count = Column(Integer, nullable=False, default=0)

    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    client_email = Column(String, ForeignKey("users.email"), nullable=False, index=True)
    service_type = Column(String, nullable=False)

    schedule_date = Column(Date, nullable=False)
    schedule_time = Column(String, nullable=False)
    frequency = Column(String, nullable=False, default="once")

    address = Column(String, nullable=False)
    city = Column(String, nullable=False, index=True)
    property_type = Column(String, nullable=False)
    bedrooms = Column(Integer, nullable=False)
    bathrooms = Column(Integer, nullable=False)
    square_footage = Column(Integer, nullable=False, default=0)
    special_instructions = Column(String, nullable=True)
    extras = Column(JSON, nullable=False, default=dict)

    total_price = Column(Integer, nullable=False)

    # pending-cleaner/pending/accepted/confirmed/in-progress/completed/cancelled
    status = Column(String, nullable=False, index=True)

    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String, nullable=True)
    transaction_id = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    assigned_cleaner_email = Column(String, ForeignKey("users.email"), nullable=True, index=True)

    client_notes = Column(String, nullable=True)
    cleaner_notes = Column(String, nullable=True)
    invitation_sent = Column(Boolean, nullable=False, default=False)

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    version = Column(Integer, nullable=False)

    client = relationship("User", foreign_keys=[client_email], lazy="selectin")
    assigned_cleaner = relationship("User", foreign_keys=[assigned_cleaner_email], lazy="selectin")
    applications = relationship(
        "Application",
        back_populates="booking",
        order_by="Application.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class Application(Base):
    __tablename__ = "booking_applications"
    __table_args__ = (
        UniqueConstraint("booking_pk", "cleaner_email", name="uq_application_booking_cleaner"),
    )

    id = Column(Integer, primary_key=True)
    booking_pk = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    cleaner_email = Column(String, ForeignKey("users.email"), nullable=False, index=True)

    status = Column(String, nullable=False, default=ApplicationStatus.PENDING)  # pending/accepted/rejected
    proposed_price = Column(Integer, nullable=False)
    message = Column(String, nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="applications")
    cleaner = relationship("User", lazy="selectin")


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(Integer, primary_key=True)
    invitation_id = Column(String, unique=True, nullable=False, index=True)

    booking_id = Column(String, ForeignKey("bookings.booking_id"), nullable=False, index=True)
    cleaner_email = Column(String, ForeignKey("users.email"), nullable=False, index=True)
    client_email = Column(String, ForeignKey("users.email"), nullable=False, index=True)

    # snapshot of what the client asked for, rendered without a join
    booking_details = Column(JSON, nullable=False)

    status = Column(String, nullable=False, index=True)  # pending/accepted/declined/expired/cancelled
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)

    booking = relationship("Booking", lazy="selectin")
    cleaner = relationship("User", foreign_keys=[cleaner_email], lazy="selectin")
    client = relationship("User", foreign_keys=[client_email], lazy="selectin")

    __mapper_args__ = {"version_id_col": version}
