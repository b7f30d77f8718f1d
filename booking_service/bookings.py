from sqlalchemy import func, select

from . import directory, expiry_worker, lifecycle
from .errors import NotFound
from .events import booking_data, emit
from .models import Booking, BookingStatus, InvitationStatus, PaymentStatus, utcnow
from .schemas import CreateBookingRequest


def _booking_fields(data: CreateBookingRequest) -> dict:
    return {
        "service_type": data.service_type,
        "schedule_date": data.schedule.date,
        "schedule_time": data.schedule.time,
        "frequency": data.schedule.frequency,
        "address": data.location.address,
        "city": data.location.city,
        "property_type": data.location.property_type,
        "bedrooms": data.location.bedrooms,
        "bathrooms": data.location.bathrooms,
        "square_footage": data.location.square_footage,
        "special_instructions": data.location.special_instructions,
        "extras": data.extras.model_dump(),
        "total_price": data.total_price,
        "client_notes": data.client_notes,
    }


async def load_client_booking(db, booking_id: str, client_email: str, lock: bool = False) -> Booking:
    booking = await lifecycle.load_booking(db, booking_id, lock=lock)
    if not booking or booking.client_email != client_email:
        raise NotFound("Booking not found")
    return booking


async def create_booking(db, client_email: str, data: CreateBookingRequest, now=None) -> Booking:
    now = now or utcnow()

    async def operation(db):
        await directory.get_client(db, client_email)
        booking = lifecycle.new_booking(client_email, now, **_booking_fields(data))
        db.add(booking)
        await directory.increment_client_bookings(db, client_email)
        return booking.booking_id

    booking_id = await lifecycle.run_serialized(db, operation)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.created", booking_data(booking))
    return booking


async def get_booking(db, booking_id: str, requester_email: str) -> Booking:
    booking = await lifecycle.load_booking(db, booking_id)
    if not booking or requester_email not in (booking.client_email, booking.assigned_cleaner_email):
        raise NotFound("Booking not found")
    return booking


async def list_client_bookings(db, client_email: str) -> list[Booking]:
    res = await db.execute(
        select(Booking)
        .where(Booking.client_email == client_email)
        .order_by(Booking.created_at.desc())
    )
    return list(res.scalars().all())


async def list_cleaner_jobs(db, cleaner_email: str) -> list[Booking]:
    res = await db.execute(
        select(Booking)
        .where(
            Booking.assigned_cleaner_email == cleaner_email,
            Booking.status.in_(lifecycle.ASSIGNED_STATUSES),
        )
        .order_by(Booking.schedule_date.asc())
    )
    return list(res.scalars().all())


async def cancel_booking(db, booking_id: str, client_email: str, reason: str | None = None, now=None) -> Booking:
    now = now or utcnow()

    async def operation(db):
        booking = await load_client_booking(db, booking_id, client_email, lock=True)
        lifecycle.cancel(booking, now, reason)
        return await lifecycle.close_pending_invitations(db, booking_id, InvitationStatus.CANCELLED)

    closed = await lifecycle.run_serialized(db, operation)
    for invitation_id in closed:
        await expiry_worker.unschedule_invitation_expiry(invitation_id)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.cancelled", {**booking_data(booking), "reason": reason})
    return booking


async def complete_payment(
    db,
    booking_id: str,
    client_email: str,
    payment_method: str | None = None,
    transaction_id: str | None = None,
    now=None,
) -> Booking:
    now = now or utcnow()

    async def operation(db):
        booking = await load_client_booking(db, booking_id, client_email, lock=True)
        lifecycle.confirm_payment(booking, now, payment_method, transaction_id)

    await lifecycle.run_serialized(db, operation)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.payment_completed", booking_data(booking))
    return booking


async def update_job_status(
    db,
    booking_id: str,
    cleaner_email: str,
    status: str,
    notes: str | None = None,
    now=None,
) -> Booking:
    now = now or utcnow()

    async def operation(db):
        booking = await lifecycle.load_booking(db, booking_id, lock=True)
        if not booking or booking.assigned_cleaner_email != cleaner_email:
            raise NotFound("Job not found or not assigned to you")

        completed = lifecycle.advance_job(booking, status, now, notes)
        if completed:
            # same transaction as the transition, so a retried completion cannot count twice
            await directory.increment_completed_jobs(db, cleaner_email)

    await lifecycle.run_serialized(db, operation)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.status_changed", booking_data(booking))
    return booking


async def get_booking_stats(db, client_email: str) -> dict:
    async def count(*criteria) -> int:
        res = await db.execute(
            select(func.count(Booking.id)).where(Booking.client_email == client_email, *criteria)
        )
        return res.scalar_one()

    total = await count()
    pending = await count(Booking.status.in_(lifecycle.APPLICATION_WINDOW))
    completed = await count(Booking.status == BookingStatus.COMPLETED)

    res = await db.execute(
        select(func.coalesce(func.sum(Booking.total_price), 0)).where(
            Booking.client_email == client_email,
            Booking.payment_status == PaymentStatus.PAID,
        )
    )
    total_spent = res.scalar_one()

    return {
        "total": total,
        "pending": pending,
        "completed": completed,
        "total_spent": int(total_spent),
    }
