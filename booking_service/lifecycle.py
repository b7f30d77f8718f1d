"""
Booking lifecycle: the single place where a booking's status changes.

Both matching paths (marketplace applications and direct invitations), payment,
job progress, cancellation and the expiry sweeper call through here. Functions in
the first half mutate an in-session Booking and raise InvalidTransition when the
current status does not allow the requested one; the second half loads bookings
and runs a mutation as one serialized transaction.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .config import APPLY_MAX_RETRIES
from .errors import AlreadyApplied, Conflict, InvalidTransition, NotFound
from .models import (
    Application,
    ApplicationStatus,
    Booking,
    BookingStatus,
    Invitation,
    InvitationStatus,
    PaymentStatus,
)

OPEN_STATUSES = (BookingStatus.PENDING_CLEANER, BookingStatus.PENDING)
ASSIGNED_STATUSES = (
    BookingStatus.ACCEPTED,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
)
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

# assignment stays provisional until payment
APPLICATION_WINDOW = OPEN_STATUSES + (BookingStatus.ACCEPTED,)

_FROM_OPEN = {BookingStatus.ACCEPTED, BookingStatus.CONFIRMED, BookingStatus.CANCELLED}

TRANSITIONS = {
    BookingStatus.PENDING_CLEANER: _FROM_OPEN,
    BookingStatus.PENDING: _FROM_OPEN,
    BookingStatus.ACCEPTED: {BookingStatus.ACCEPTED, BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# what a cleaner may move a job to, keyed by the status it holds now
JOB_PROGRESS = {
    BookingStatus.CONFIRMED: BookingStatus.IN_PROGRESS,
    BookingStatus.IN_PROGRESS: BookingStatus.COMPLETED,
}

SOURCE_APPLICATION = "application"
SOURCE_INVITATION = "invitation"

TIMEOUT_REASON = "timeout"
DECLINED_REASON = "Cleaner declined"
DEFAULT_APPLICATION_MESSAGE = "I would love to help with this cleaning job!"


@dataclass(frozen=True)
class Assignment:
    cleaner_email: str
    source: str


def is_open(booking: Booking) -> bool:
    return booking.status in OPEN_STATUSES


def find_application(booking: Booking, cleaner_email: str) -> Application | None:
    for application in booking.applications:
        if application.cleaner_email == cleaner_email:
            return application
    return None


def _move(booking: Booking, target: str, now: datetime):
    if target not in TRANSITIONS.get(booking.status, ()):
        raise InvalidTransition(booking.status, target)
    booking.status = target
    booking.updated_at = now


def _close(booking: Booking, reason: str | None, now: datetime):
    _move(booking, BookingStatus.CANCELLED, now)
    booking.cancelled_at = now
    booking.cancellation_reason = reason
    booking.assigned_cleaner_email = None

    if booking.payment_status == PaymentStatus.PAID:
        booking.payment_status = PaymentStatus.REFUNDED
    elif booking.payment_status == PaymentStatus.PENDING:
        booking.payment_status = PaymentStatus.CANCELLED


def new_booking(client_email: str, now: datetime, invitation_sent: bool = False, **fields) -> Booking:
    return Booking(
        booking_id=str(uuid.uuid4()),
        client_email=client_email,
        status=BookingStatus.PENDING_CLEANER,
        payment_status=PaymentStatus.PENDING,
        assigned_cleaner_email=None,
        invitation_sent=invitation_sent,
        created_at=now,
        updated_at=now,
        **fields,
    )


def assign(booking: Booking, assignment: Assignment, now: datetime):
    """
    Consume an assignment produced by either matching path.

    Applications land in accepted (payment still due) and re-derive the winner
    among the applications; invitations skip straight to confirmed.
    """
    if assignment.source == SOURCE_APPLICATION:
        if booking.status not in APPLICATION_WINDOW:
            raise InvalidTransition(
                booking.status,
                BookingStatus.ACCEPTED,
                "This booking is no longer accepting applications",
            )
        if not booking.applications:
            raise InvalidTransition(
                booking.status,
                BookingStatus.ACCEPTED,
                "No applications found for this booking",
            )
        chosen = find_application(booking, assignment.cleaner_email)
        if chosen is None:
            raise NotFound("Application not found for this cleaner")

        for application in booking.applications:
            if application is chosen:
                application.status = ApplicationStatus.ACCEPTED
            else:
                application.status = ApplicationStatus.REJECTED
        target = BookingStatus.ACCEPTED

    elif assignment.source == SOURCE_INVITATION:
        if not is_open(booking):
            raise InvalidTransition(booking.status, BookingStatus.CONFIRMED)
        for application in booking.applications:
            application.status = ApplicationStatus.REJECTED
        target = BookingStatus.CONFIRMED

    else:
        raise ValueError(f"Unknown assignment source: {assignment.source}")

    _move(booking, target, now)
    booking.assigned_cleaner_email = assignment.cleaner_email
    booking.accepted_at = now


def submit_application(
    booking: Booking,
    cleaner_email: str,
    now: datetime,
    proposed_price: int | None = None,
    message: str | None = None,
) -> tuple[Application, bool]:
    """
    Append an application and auto-accept it when it is the first one.

    Returns (application, auto_accepted).
    """
    if booking.status not in APPLICATION_WINDOW:
        raise InvalidTransition(
            booking.status,
            BookingStatus.ACCEPTED,
            "This job is no longer available for applications",
        )
    if find_application(booking, cleaner_email) is not None:
        raise AlreadyApplied()

    application = Application(
        cleaner_email=cleaner_email,
        status=ApplicationStatus.PENDING,
        proposed_price=proposed_price or booking.total_price,
        message=message or DEFAULT_APPLICATION_MESSAGE,
        applied_at=now,
    )
    booking.applications.append(application)
    # bump the row even when status stays put so the version check sees the append
    booking.updated_at = now

    auto_accepted = len(booking.applications) == 1 and is_open(booking)
    if auto_accepted:
        assign(booking, Assignment(cleaner_email, SOURCE_APPLICATION), now)

    return application, auto_accepted


def confirm_payment(
    booking: Booking,
    now: datetime,
    payment_method: str | None = None,
    transaction_id: str | None = None,
):
    if booking.status != BookingStatus.ACCEPTED:
        raise InvalidTransition(
            booking.status,
            BookingStatus.CONFIRMED,
            "Booking must be accepted by cleaner before payment",
        )
    if not booking.assigned_cleaner_email:
        raise InvalidTransition(
            booking.status,
            BookingStatus.CONFIRMED,
            "No cleaner assigned to this booking",
        )

    _move(booking, BookingStatus.CONFIRMED, now)
    booking.payment_status = PaymentStatus.PAID
    booking.payment_method = payment_method
    booking.transaction_id = transaction_id
    booking.paid_at = now


def advance_job(booking: Booking, requested: str, now: datetime, notes: str | None = None) -> bool:
    """Move a job along confirmed -> in-progress -> completed. Returns True on completion."""
    if JOB_PROGRESS.get(booking.status) != requested:
        raise InvalidTransition(booking.status, requested)

    _move(booking, requested, now)
    if notes:
        booking.cleaner_notes = notes

    if requested == BookingStatus.IN_PROGRESS:
        booking.started_at = now
        return False

    booking.completed_at = now
    return True


def cancel(booking: Booking, now: datetime, reason: str | None = None):
    if booking.status in TERMINAL_STATUSES:
        raise InvalidTransition(booking.status, BookingStatus.CANCELLED)
    _close(booking, reason, now)


def release_declined(booking: Booking, now: datetime, reason: str | None = None) -> bool:
    """Cancel an invitation's booking after a decline, unless someone else already took it."""
    if not is_open(booking):
        return False
    _close(booking, reason or DECLINED_REASON, now)
    return True


def expire(booking: Booking, now: datetime) -> bool:
    """Sweeper transition; a booking that is no longer open is left untouched."""
    if not is_open(booking):
        return False
    _close(booking, TIMEOUT_REASON, now)
    return True


async def load_booking(db, booking_id: str, lock: bool = False) -> Booking | None:
    stmt = (
        select(Booking)
        .where(Booking.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def close_pending_invitations(db, booking_id: str, status: str) -> list[str]:
    """
    Close every still-pending invitation backed by a booking that just left the open state.

    Returns the closed invitation ids so the caller can drop their expiry entries after commit.
    """
    res = await db.execute(
        select(Invitation.invitation_id).where(
            Invitation.booking_id == booking_id,
            Invitation.status == InvitationStatus.PENDING,
        )
    )
    invitation_ids = list(res.scalars().all())
    if not invitation_ids:
        return []

    await db.execute(
        update(Invitation)
        .where(
            Invitation.invitation_id.in_(invitation_ids),
            Invitation.status == InvitationStatus.PENDING,
        )
        .values(status=status, version=Invitation.version + 1)
        .execution_options(synchronize_session=False)
    )
    return invitation_ids


async def run_serialized(db, operation, attempts: int = APPLY_MAX_RETRIES):
    """
    Run operation(db) as one transaction and commit it.

    Interleaved writers on the same row surface as StaleDataError (version check)
    or IntegrityError (unique application per cleaner). The transaction is rolled
    back and the operation re-run from a fresh read, so its preconditions are
    evaluated against the winner's state.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = await operation(db)
            await db.commit()
            return result
        except (StaleDataError, IntegrityError) as e:
            await db.rollback()
            if attempt == attempts:
                raise Conflict("Booking was modified concurrently, please retry") from e
        except Exception:
            await db.rollback()
            raise
