import uuid
from datetime import timedelta

from sqlalchemy import select

from . import directory, expiry_worker, lifecycle
from .config import INVITATION_TTL_MINUTES
from .errors import CleanerUnavailable, Forbidden, InvalidTransition, NotFound, ValidationError
from .events import booking_data, emit
from .models import Invitation, InvitationStatus, utcnow
from .schemas import InvitationBookingDetails, SendInvitationRequest

DEFAULT_PROPERTY_TYPE = "house"


def resolve_city(details: InvitationBookingDetails) -> str:
    if details.city and details.city.strip():
        return details.city.strip()

    # "Street, City[, Country]"
    parts = [p.strip() for p in details.location.split(",")]
    if len(parts) > 1 and parts[1]:
        return parts[1]

    raise ValidationError("City is required: set booking_details.city or use 'address, city' as location")


async def load_invitation(db, invitation_id: str, lock: bool = False) -> Invitation | None:
    stmt = (
        select(Invitation)
        .where(Invitation.invitation_id == invitation_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def send_invitation(db, client_email: str, data: SendInvitationRequest, now=None) -> Invitation:
    """
    Direct a booking at one named cleaner.

    Creates the backing booking (open, invitation_sent) and a pending invitation
    that times out after INVITATION_TTL_MINUTES.
    """
    now = now or utcnow()
    details = data.booking_details
    city = resolve_city(details)

    async def operation(db):
        await directory.get_client(db, client_email)
        cleaner = await directory.find_available_cleaner(db, data.cleaner_email)
        if not cleaner:
            raise CleanerUnavailable()

        booking = lifecycle.new_booking(
            client_email,
            now,
            invitation_sent=True,
            service_type=details.service_type,
            schedule_date=details.date,
            schedule_time=details.time,
            frequency="once",
            address=details.location,
            city=city,
            property_type=DEFAULT_PROPERTY_TYPE,
            bedrooms=details.bedrooms,
            bathrooms=details.bathrooms,
            square_footage=0,
            extras={},
            total_price=details.total_price,
        )
        invitation = Invitation(
            invitation_id=str(uuid.uuid4()),
            booking=booking,
            cleaner_email=cleaner.email,
            client_email=client_email,
            booking_details=details.model_dump(mode="json"),
            status=InvitationStatus.PENDING,
            expires_at=now + timedelta(minutes=INVITATION_TTL_MINUTES),
            sent_at=now,
        )
        db.add(invitation)
        await directory.increment_client_bookings(db, client_email)
        return invitation.invitation_id

    invitation_id = await lifecycle.run_serialized(db, operation)
    invitation = await load_invitation(db, invitation_id)

    await expiry_worker.schedule_invitation_expiry(invitation_id, invitation.expires_at)
    await emit(
        "invitation.sent",
        {
            "invitation_id": invitation_id,
            "booking_id": invitation.booking_id,
            "cleaner_email": invitation.cleaner_email,
            "client_email": client_email,
            "expires_at": invitation.expires_at,
        },
    )
    return invitation


async def get_invitation_status(db, invitation_id: str, client_email: str, now=None) -> Invitation:
    invitation = await load_invitation(db, invitation_id)
    if not invitation:
        raise NotFound("Invitation not found")
    if invitation.client_email != client_email:
        raise Forbidden()

    if expiry_worker.is_overdue(invitation, now):
        await expiry_worker.expire_invitation(db, invitation_id, now)
        invitation = await load_invitation(db, invitation_id)

    return invitation


async def _load_pending_for(db, invitation_id: str, cleaner_email: str) -> Invitation:
    invitation = await load_invitation(db, invitation_id, lock=True)
    if (
        not invitation
        or invitation.cleaner_email != cleaner_email
        or invitation.status != InvitationStatus.PENDING
    ):
        raise NotFound("Invitation not found or already processed")
    return invitation


async def accept_invitation(db, invitation_id: str, cleaner_email: str, now=None) -> Invitation:
    now = now or utcnow()

    async def operation(db):
        invitation = await _load_pending_for(db, invitation_id, cleaner_email)
        if expiry_worker.is_overdue(invitation, now):
            return False

        booking = await lifecycle.load_booking(db, invitation.booking_id, lock=True)
        if not booking:
            raise NotFound("Booking not found")
        lifecycle.assign(booking, lifecycle.Assignment(cleaner_email, lifecycle.SOURCE_INVITATION), now)

        invitation.status = InvitationStatus.ACCEPTED
        invitation.responded_at = now
        return True

    if not await lifecycle.run_serialized(db, operation):
        await expiry_worker.expire_invitation(db, invitation_id, now)
        raise InvalidTransition(InvitationStatus.EXPIRED, InvitationStatus.ACCEPTED, "Invitation has expired")

    invitation = await load_invitation(db, invitation_id)
    booking = await lifecycle.load_booking(db, invitation.booking_id)

    await expiry_worker.unschedule_invitation_expiry(invitation_id)
    await emit(
        "invitation.accepted",
        {"invitation_id": invitation_id, "booking_id": invitation.booking_id, "cleaner_email": cleaner_email},
    )
    await emit("booking.cleaner_assigned", {**booking_data(booking), "source": lifecycle.SOURCE_INVITATION})
    return invitation


async def decline_invitation(
    db,
    invitation_id: str,
    cleaner_email: str,
    reason: str | None = None,
    now=None,
) -> Invitation:
    now = now or utcnow()

    async def operation(db):
        invitation = await _load_pending_for(db, invitation_id, cleaner_email)
        invitation.status = InvitationStatus.DECLINED
        invitation.responded_at = now

        booking = await lifecycle.load_booking(db, invitation.booking_id, lock=True)
        return booking is not None and lifecycle.release_declined(booking, now, reason)

    released = await lifecycle.run_serialized(db, operation)
    invitation = await load_invitation(db, invitation_id)

    await expiry_worker.unschedule_invitation_expiry(invitation_id)
    await emit(
        "invitation.declined",
        {
            "invitation_id": invitation_id,
            "booking_id": invitation.booking_id,
            "cleaner_email": cleaner_email,
            "reason": reason or lifecycle.DECLINED_REASON,
        },
    )
    if released:
        booking = await lifecycle.load_booking(db, invitation.booking_id)
        await emit("booking.cancelled", {**booking_data(booking), "reason": booking.cancellation_reason})
    return invitation


async def get_cleaner_invitations(db, cleaner_email: str, now=None) -> list[Invitation]:
    now = now or utcnow()
    await directory.get_cleaner(db, cleaner_email)

    res = await db.execute(
        select(Invitation)
        .where(
            Invitation.cleaner_email == cleaner_email,
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at > now,
        )
        .order_by(Invitation.sent_at.desc())
    )
    return list(res.scalars().all())
