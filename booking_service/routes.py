from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from . import applications, bookings, directory, expiry_worker, invitations
from .db import get_db
from .errors import Forbidden, NotFound
from .models import as_utc
from .schemas import (
    AcceptApplicationRequest,
    ApplicationResponse,
    ApplyRequest,
    ApplyResponse,
    BookingResponse,
    BookingStats,
    CancelBookingRequest,
    CompletePaymentRequest,
    CreateBookingRequest,
    CreateUser,
    DeclineInvitationRequest,
    Extras,
    InvitationResponse,
    InvitationStatusResponse,
    Location,
    Payment,
    PersonSummary,
    Schedule,
    SendInvitationRequest,
    SendInvitationResponse,
    SweepResponse,
    UpdateAvailability,
    UpdateJobStatusRequest,
    UserResponse,
)
from .security import get_current_user, require_role

router = APIRouter()


def _is_admin(user: dict) -> bool:
    return "admin" in {r.lower() for r in user.get("roles") or []}


def _person(user) -> PersonSummary | None:
    if user is None:
        return None
    return PersonSummary(
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        avatar=user.avatar,
        phone=user.phone,
        rating=user.rating,
        completed_jobs=user.completed_jobs,
    )


def _user_out(user) -> UserResponse:
    return UserResponse(
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        user_type=user.user_type,
        phone=user.phone,
        avatar=user.avatar,
        is_available=user.is_available,
        rating=user.rating,
        completed_jobs=user.completed_jobs,
        bookings_count=user.bookings_count,
    )


def _application_out(application) -> ApplicationResponse:
    return ApplicationResponse(
        cleaner_email=application.cleaner_email,
        cleaner=_person(application.cleaner),
        status=application.status,
        proposed_price=application.proposed_price,
        message=application.message,
        applied_at=as_utc(application.applied_at),
    )


def _booking_out(b) -> BookingResponse:
    return BookingResponse(
        booking_id=b.booking_id,
        client_email=b.client_email,
        client=_person(b.client),
        service_type=b.service_type,
        schedule=Schedule(date=b.schedule_date, time=b.schedule_time, frequency=b.frequency),
        location=Location(
            address=b.address,
            city=b.city,
            property_type=b.property_type,
            bedrooms=b.bedrooms,
            bathrooms=b.bathrooms,
            square_footage=b.square_footage or 0,
            special_instructions=b.special_instructions,
        ),
        extras=Extras(**(b.extras or {})),
        total_price=b.total_price,
        status=b.status,
        payment=Payment(
            status=b.payment_status,
            method=b.payment_method,
            transaction_id=b.transaction_id,
            paid_at=as_utc(b.paid_at),
        ),
        assigned_cleaner_email=b.assigned_cleaner_email,
        assigned_cleaner=_person(b.assigned_cleaner) if b.assigned_cleaner_email else None,
        applications=[_application_out(a) for a in b.applications],
        client_notes=b.client_notes,
        cleaner_notes=b.cleaner_notes,
        invitation_sent=b.invitation_sent,
        accepted_at=as_utc(b.accepted_at),
        started_at=as_utc(b.started_at),
        completed_at=as_utc(b.completed_at),
        cancelled_at=as_utc(b.cancelled_at),
        cancellation_reason=b.cancellation_reason,
        created_at=as_utc(b.created_at),
    )


def _invitation_out(inv) -> InvitationResponse:
    return InvitationResponse(
        invitation_id=inv.invitation_id,
        booking_id=inv.booking_id,
        client_email=inv.client_email,
        client=_person(inv.client),
        cleaner_email=inv.cleaner_email,
        status=inv.status,
        booking_details=inv.booking_details,
        expires_at=as_utc(inv.expires_at),
        sent_at=as_utc(inv.sent_at),
        responded_at=as_utc(inv.responded_at),
    )


# =========================
# USERS / CLEANERS
# =========================

@router.post("/users", response_model=UserResponse)
async def create_user(
    data: CreateUser,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if data.email != user["sub"] and not _is_admin(user):
        raise Forbidden("You can only create your own profile")

    created = await directory.create_user(db, **data.model_dump())
    return _user_out(created)


@router.get("/users/{email}", response_model=UserResponse)
async def get_user(
    email: str,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    found = await directory.get_user(db, email)
    if not found:
        raise NotFound("User not found")
    return _user_out(found)


@router.put("/users/{email}/availability", response_model=UserResponse)
async def set_availability(
    email: str,
    data: UpdateAvailability,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner", "admin"])
    if email != user["sub"] and not _is_admin(user):
        raise Forbidden("You can only change your own availability")

    updated = await directory.set_availability(db, email, data.is_available)
    return _user_out(updated)


@router.get("/cleaners/available", response_model=list[PersonSummary])
async def available_cleaners(
    limit: int = 20,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client", "admin"])
    cleaners = await directory.list_available_cleaners(db, limit=limit)
    return [_person(c) for c in cleaners]


# =========================
# BOOKINGS
# =========================

@router.post("/bookings", response_model=BookingResponse)
async def create_booking(
    data: CreateBookingRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    booking = await bookings.create_booking(db, user["sub"], data)
    return _booking_out(booking)


@router.get("/bookings/my-bookings", response_model=list[BookingResponse])
async def my_bookings(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    return [_booking_out(b) for b in await bookings.list_client_bookings(db, user["sub"])]


@router.get("/bookings/stats/dashboard", response_model=BookingStats)
async def booking_stats(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    return BookingStats(**await bookings.get_booking_stats(db, user["sub"]))


@router.get("/bookings/available-jobs", response_model=list[BookingResponse])
async def available_jobs(
    city: str | None = None,
    service_type: str | None = None,
    max_price: int | None = None,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    jobs = await applications.get_available_jobs(db, city=city, service_type=service_type, max_price=max_price)
    return [_booking_out(b) for b in jobs]


@router.get("/bookings/cleaner/my-jobs", response_model=list[BookingResponse])
async def my_jobs(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    return [_booking_out(b) for b in await bookings.list_cleaner_jobs(db, user["sub"])]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client", "cleaner"])
    return _booking_out(await bookings.get_booking(db, booking_id, user["sub"]))


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    data: CancelBookingRequest | None = None,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    reason = data.reason if data else None
    booking = await bookings.cancel_booking(db, booking_id, user["sub"], reason)
    return _booking_out(booking)


@router.post("/bookings/{booking_id}/apply", response_model=ApplyResponse)
async def apply_for_job(
    booking_id: str,
    data: ApplyRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    booking, auto_accepted = await applications.apply_for_job(
        db, booking_id, user["sub"], proposed_price=data.proposed_price, message=data.message
    )
    if auto_accepted:
        message = "Application submitted and automatically accepted! You are assigned to this job."
    else:
        message = "Application submitted successfully"
    return ApplyResponse(message=message, auto_accepted=auto_accepted, booking=_booking_out(booking))


@router.get("/bookings/{booking_id}/applications", response_model=list[ApplicationResponse])
async def job_applications(
    booking_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    found = await applications.get_job_applications(db, booking_id, user["sub"])
    return [_application_out(a) for a in found]


@router.patch("/bookings/{booking_id}/accept-cleaner", response_model=BookingResponse)
async def accept_cleaner(
    booking_id: str,
    data: AcceptApplicationRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    booking = await applications.accept_cleaner_application(db, booking_id, user["sub"], data.cleaner_email)
    return _booking_out(booking)


@router.patch("/bookings/{booking_id}/complete-payment", response_model=BookingResponse)
async def complete_payment(
    booking_id: str,
    data: CompletePaymentRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    booking = await bookings.complete_payment(
        db, booking_id, user["sub"], payment_method=data.payment_method, transaction_id=data.transaction_id
    )
    return _booking_out(booking)


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_job_status(
    booking_id: str,
    data: UpdateJobStatusRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    booking = await bookings.update_job_status(db, booking_id, user["sub"], data.status, data.notes)
    return _booking_out(booking)


# =========================
# INVITATIONS
# =========================

@router.post("/invitations/send", response_model=SendInvitationResponse)
async def send_invitation(
    data: SendInvitationRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    inv = await invitations.send_invitation(db, user["sub"], data)
    return SendInvitationResponse(
        invitation_id=inv.invitation_id,
        booking_id=inv.booking_id,
        cleaner=_person(inv.cleaner),
        expires_at=as_utc(inv.expires_at),
    )


@router.get("/invitations/status/{invitation_id}", response_model=InvitationStatusResponse)
async def invitation_status(
    invitation_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["client"])
    inv = await invitations.get_invitation_status(db, invitation_id, user["sub"])
    return InvitationStatusResponse(
        invitation_id=inv.invitation_id,
        booking_id=inv.booking_id,
        status=inv.status,
        cleaner=_person(inv.cleaner),
        responded_at=as_utc(inv.responded_at),
        expires_at=as_utc(inv.expires_at),
    )


@router.get("/invitations/cleaner/pending", response_model=list[InvitationResponse])
async def pending_invitations(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    return [_invitation_out(i) for i in await invitations.get_cleaner_invitations(db, user["sub"])]


@router.patch("/invitations/{invitation_id}/accept", response_model=InvitationResponse)
async def accept_invitation(
    invitation_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    return _invitation_out(await invitations.accept_invitation(db, invitation_id, user["sub"]))


@router.patch("/invitations/{invitation_id}/decline", response_model=InvitationResponse)
async def decline_invitation(
    invitation_id: str,
    data: DeclineInvitationRequest | None = None,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["cleaner"])
    reason = data.reason if data else None
    inv = await invitations.decline_invitation(db, invitation_id, user["sub"], reason)
    return _invitation_out(inv)


# =========================
# SYSTEM
# =========================

@router.post("/system/sweep", response_model=SweepResponse)
async def run_sweep(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["admin"])
    return SweepResponse(**await expiry_worker.sweep_expired(db))
