from sqlalchemy import select

from . import directory, expiry_worker, lifecycle
from .bookings import load_client_booking
from .errors import NotFound
from .events import booking_data, emit
from .models import Application, Booking, InvitationStatus, utcnow


def _like_term(text: str) -> str:
    # wildcard characters typed by the user match literally
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def get_available_jobs(
    db,
    city: str | None = None,
    service_type: str | None = None,
    max_price: int | None = None,
) -> list[Booking]:
    stmt = select(Booking).where(
        Booking.status.in_(lifecycle.OPEN_STATUSES),
        Booking.assigned_cleaner_email.is_(None),
    )

    if city:
        stmt = stmt.where(Booking.city.ilike(_like_term(city.strip()), escape="\\"))
    if service_type:
        stmt = stmt.where(Booking.service_type == service_type)
    if max_price is not None:
        stmt = stmt.where(Booking.total_price <= max_price)

    res = await db.execute(stmt.order_by(Booking.created_at.desc()))
    return list(res.scalars().all())


async def apply_for_job(
    db,
    booking_id: str,
    cleaner_email: str,
    proposed_price: int | None = None,
    message: str | None = None,
    now=None,
) -> tuple[Booking, bool]:
    """
    Submit a cleaner's application. Returns (booking, auto_accepted).

    The first-application check and the append happen in one versioned write, so
    two cleaners racing for an empty booking cannot both be auto-accepted: the
    loser is re-run against the winner's state and lands as pending.
    """
    now = now or utcnow()

    async def operation(db):
        await directory.get_cleaner(db, cleaner_email)
        booking = await lifecycle.load_booking(db, booking_id, lock=True)
        if not booking:
            raise NotFound("Job not found")
        _, auto_accepted = lifecycle.submit_application(booking, cleaner_email, now, proposed_price, message)
        closed = []
        if auto_accepted:
            # a direct invitation for this booking can no longer be honoured
            closed = await lifecycle.close_pending_invitations(db, booking_id, InvitationStatus.CANCELLED)
        return auto_accepted, closed

    auto_accepted, closed = await lifecycle.run_serialized(db, operation)
    for invitation_id in closed:
        await expiry_worker.unschedule_invitation_expiry(invitation_id)
    booking = await lifecycle.load_booking(db, booking_id)

    await emit(
        "booking.application_submitted",
        {"booking_id": booking_id, "cleaner_email": cleaner_email, "auto_accepted": auto_accepted},
    )
    if auto_accepted:
        await emit("booking.cleaner_assigned", {**booking_data(booking), "source": lifecycle.SOURCE_APPLICATION})

    return booking, auto_accepted


async def get_job_applications(db, booking_id: str, client_email: str) -> list[Application]:
    booking = await load_client_booking(db, booking_id, client_email)
    return list(booking.applications)


async def accept_cleaner_application(db, booking_id: str, client_email: str, cleaner_email: str, now=None) -> Booking:
    now = now or utcnow()

    async def operation(db):
        booking = await load_client_booking(db, booking_id, client_email, lock=True)
        was_open = lifecycle.is_open(booking)
        lifecycle.assign(booking, lifecycle.Assignment(cleaner_email, lifecycle.SOURCE_APPLICATION), now)
        if not was_open:
            return []
        return await lifecycle.close_pending_invitations(db, booking_id, InvitationStatus.CANCELLED)

    closed = await lifecycle.run_serialized(db, operation)
    for invitation_id in closed:
        await expiry_worker.unschedule_invitation_expiry(invitation_id)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.cleaner_assigned", {**booking_data(booking), "source": lifecycle.SOURCE_APPLICATION})
    return booking
