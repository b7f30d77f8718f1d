import asyncio
import time
from datetime import timedelta

from redis.exceptions import RedisError
from sqlalchemy import select, update

from . import lifecycle
from .config import EXPIRY_POLL_SECONDS, OPEN_JOB_TTL_MINUTES, SERVICE_NAME, SWEEP_INTERVAL_SECONDS
from .db import SessionLocal
from .events import booking_data, emit
from .models import Booking, Invitation, InvitationStatus, as_utc, utcnow
from .redis_client import redis_client

EXPIRY_ZSET = "invitation_expiry"
DUE_BATCH = 50


def is_overdue(invitation: Invitation, now=None) -> bool:
    now = now or utcnow()
    return invitation.status == InvitationStatus.PENDING and as_utc(invitation.expires_at) < now


async def expire_invitation(db, invitation_id: str, now=None) -> bool:
    """
    The single expiry path for an invitation.

    The status flip is a compare-and-swap on status = pending, so of several
    concurrent callers (lazy read, redis poll, full sweep) exactly one sees a row
    updated and cascades the timeout onto the booking. Returns True for that caller.
    """
    now = now or utcnow()

    async def operation(db):
        res = await db.execute(
            update(Invitation)
            .where(
                Invitation.invitation_id == invitation_id,
                Invitation.status == InvitationStatus.PENDING,
                Invitation.expires_at < now,
            )
            .values(
                status=InvitationStatus.EXPIRED,
                responded_at=now,
                version=Invitation.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return None

        res = await db.execute(select(Invitation.booking_id).where(Invitation.invitation_id == invitation_id))
        booking_id = res.scalar_one()

        booking = await lifecycle.load_booking(db, booking_id, lock=True)
        cancelled = booking is not None and lifecycle.expire(booking, now)
        return booking_id, cancelled

    outcome = await lifecycle.run_serialized(db, operation)
    if outcome is None:
        return False

    booking_id, cancelled = outcome
    await unschedule_invitation_expiry(invitation_id)
    await emit("invitation.expired", {"invitation_id": invitation_id, "booking_id": booking_id})
    if cancelled:
        booking = await lifecycle.load_booking(db, booking_id)
        await emit("booking.expired", {**booking_data(booking), "reason": lifecycle.TIMEOUT_REASON})
    return True


async def expire_booking(db, booking_id: str, now=None) -> bool:
    """Cancel one stale open booking with reason timeout. A booking that moved on is left alone."""
    now = now or utcnow()

    async def operation(db):
        booking = await lifecycle.load_booking(db, booking_id, lock=True)
        if not booking or not lifecycle.expire(booking, now):
            return None
        return await lifecycle.close_pending_invitations(db, booking_id, InvitationStatus.EXPIRED)

    closed = await lifecycle.run_serialized(db, operation)
    if closed is None:
        return False

    for invitation_id in closed:
        await unschedule_invitation_expiry(invitation_id)
    booking = await lifecycle.load_booking(db, booking_id)
    await emit("booking.expired", {**booking_data(booking), "reason": lifecycle.TIMEOUT_REASON})
    return True


async def sweep_expired(db, now=None) -> dict:
    """
    One full pass over the database.

    expired_invitations counts invitations this pass timed out (their bookings
    cancel with them); cancelled_bookings counts open jobs that sat unassigned
    longer than OPEN_JOB_TTL_MINUTES.
    """
    now = now or utcnow()

    res = await db.execute(
        select(Invitation.invitation_id).where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at < now,
        )
    )
    expired_invitations = 0
    for invitation_id in list(res.scalars().all()):
        if await expire_invitation(db, invitation_id, now):
            expired_invitations += 1

    cutoff = now - timedelta(minutes=OPEN_JOB_TTL_MINUTES)
    res = await db.execute(
        select(Booking.booking_id).where(
            Booking.status.in_(lifecycle.OPEN_STATUSES),
            Booking.created_at < cutoff,
        )
    )
    cancelled_bookings = 0
    for booking_id in list(res.scalars().all()):
        if await expire_booking(db, booking_id, now):
            cancelled_bookings += 1

    return {
        "expired_invitations": expired_invitations,
        "cancelled_bookings": cancelled_bookings,
    }


# ---- redis expiry index ----

async def schedule_invitation_expiry(invitation_id: str, expires_at):
    if redis_client is None:
        return
    try:
        await redis_client.zadd(EXPIRY_ZSET, {invitation_id: as_utc(expires_at).timestamp()})
    except RedisError as e:
        # the periodic database sweep still catches it
        print(f"[{SERVICE_NAME}] failed to index expiry for {invitation_id}: {e}")


async def unschedule_invitation_expiry(invitation_id: str):
    if redis_client is None:
        return
    try:
        await redis_client.zrem(EXPIRY_ZSET, invitation_id)
    except RedisError as e:
        print(f"[{SERVICE_NAME}] failed to drop expiry for {invitation_id}: {e}")


async def expire_due_invitations(db, now=None) -> int:
    if redis_client is None:
        return 0

    now = now or utcnow()
    # pop up to N expired per tick
    due = await redis_client.zrangebyscore(EXPIRY_ZSET, 0, now.timestamp(), start=0, num=DUE_BATCH)
    expired = 0
    for invitation_id in due:
        await redis_client.zrem(EXPIRY_ZSET, invitation_id)
        if await expire_invitation(db, invitation_id, now):
            expired += 1
    return expired


async def expiry_loop(stop_event: asyncio.Event, session_factory=None):
    session_factory = session_factory or SessionLocal
    last_sweep = 0.0

    while not stop_event.is_set():
        try:
            async with session_factory() as db:
                await expire_due_invitations(db)

                if time.monotonic() - last_sweep >= SWEEP_INTERVAL_SECONDS:
                    last_sweep = time.monotonic()
                    result = await sweep_expired(db)
                    if any(result.values()):
                        print(f"[{SERVICE_NAME}] sweep: {result}")
        except Exception as e:
            # keep the worker alive; the next tick retries from the database
            print(f"[{SERVICE_NAME}] expiry tick failed: {e}")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=EXPIRY_POLL_SECONDS)
        except asyncio.TimeoutError:
            continue
