"""
Tests for direct invitations: sending, accepting, declining and lazy expiry
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm.exc import StaleDataError

from booking_service import applications, directory, expiry_worker, invitations, lifecycle
from booking_service.errors import CleanerUnavailable, Forbidden, InvalidTransition, NotFound, ValidationError
from booking_service.models import BookingStatus, InvitationStatus, PaymentStatus, as_utc

from factories import BUSY_CLEANER, CLEANER, CLEANER_2, CLIENT, OTHER_CLIENT, T0, invitation_request, minutes


async def send(db, cleaner_email=CLEANER, **details):
    return await invitations.send_invitation(db, CLIENT, invitation_request(cleaner_email, **details), now=T0)


class TestSendInvitation:
    """Tests for creating an invitation and its backing booking"""

    async def test_creates_pending_invitation_and_open_booking(self, db):
        invitation = await send(db)

        assert invitation.status == InvitationStatus.PENDING
        assert as_utc(invitation.expires_at) == T0 + minutes(15)
        assert invitation.cleaner.first_name == "Anna"
        assert invitation.booking_details["location"] == "4 Garden Lane, Mombasa"

        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.status == BookingStatus.PENDING_CLEANER
        assert booking.invitation_sent is True
        assert booking.city == "Mombasa"
        assert booking.total_price == 5000

    async def test_counts_toward_client_bookings(self, db):
        await send(db)

        client = await directory.get_client(db, CLIENT)
        assert client.bookings_count == 1

    async def test_explicit_city_wins(self, db):
        invitation = await send(db, location="4 Garden Lane", city="Nakuru")

        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.city == "Nakuru"

    async def test_city_is_required(self, db):
        with pytest.raises(ValidationError):
            await send(db, location="4 Garden Lane")

    async def test_unavailable_cleaner(self, db):
        with pytest.raises(CleanerUnavailable):
            await send(db, cleaner_email=BUSY_CLEANER)

    async def test_unknown_cleaner(self, db):
        with pytest.raises(CleanerUnavailable):
            await send(db, cleaner_email="nobody@example.com")


class TestInvitationStatus:
    """Tests for the client's view of an invitation"""

    async def test_owner_sees_pending(self, db):
        invitation = await send(db)

        found = await invitations.get_invitation_status(db, invitation.invitation_id, CLIENT, now=T0 + minutes(5))

        assert found.status == InvitationStatus.PENDING

    async def test_other_client_is_forbidden(self, db):
        invitation = await send(db)

        with pytest.raises(Forbidden):
            await invitations.get_invitation_status(db, invitation.invitation_id, OTHER_CLIENT, now=T0)

    async def test_missing_invitation(self, db):
        with pytest.raises(NotFound):
            await invitations.get_invitation_status(db, "missing", CLIENT, now=T0)

    async def test_overdue_invitation_expires_on_read(self, db):
        """Reading past the deadline times out the invitation and its booking"""
        invitation = await send(db)

        found = await invitations.get_invitation_status(db, invitation.invitation_id, CLIENT, now=T0 + minutes(16))

        assert found.status == InvitationStatus.EXPIRED
        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == lifecycle.TIMEOUT_REASON
        assert booking.payment_status == PaymentStatus.CANCELLED

    async def test_rereading_is_side_effect_free(self, db):
        invitation = await send(db)
        first = await invitations.get_invitation_status(db, invitation.invitation_id, CLIENT, now=T0 + minutes(16))
        version = first.version

        again = await invitations.get_invitation_status(db, invitation.invitation_id, CLIENT, now=T0 + minutes(30))

        assert again.status == InvitationStatus.EXPIRED
        assert again.version == version


class TestAcceptInvitation:
    """Tests for the cleaner accepting an invitation"""

    async def test_accept_confirms_booking(self, db):
        invitation = await send(db)

        accepted = await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0 + minutes(3))

        assert accepted.status == InvitationStatus.ACCEPTED
        assert as_utc(accepted.responded_at) == T0 + minutes(3)
        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.assigned_cleaner_email == CLEANER

    async def test_accept_does_not_count_completed_job(self, db):
        invitation = await send(db)
        await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0)

        cleaner = await directory.get_cleaner(db, CLEANER)
        assert cleaner.completed_jobs == 0

    async def test_only_addressed_cleaner_can_accept(self, db):
        invitation = await send(db)

        with pytest.raises(NotFound):
            await invitations.accept_invitation(db, invitation.invitation_id, CLEANER_2, now=T0)

    async def test_accept_is_one_shot(self, db):
        invitation = await send(db)
        await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0)

        with pytest.raises(NotFound):
            await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0)

    async def test_accept_after_expiry_fails_and_expires(self, db):
        """An overdue accept is refused and the timeout is applied"""
        invitation = await send(db)

        with pytest.raises(InvalidTransition):
            await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0 + minutes(16))

        found = await invitations.load_invitation(db, invitation.invitation_id)
        assert found.status == InvitationStatus.EXPIRED
        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.status == BookingStatus.CANCELLED

    async def test_accept_after_marketplace_match_fails(self, db):
        """An invitation cannot take over a booking another cleaner already won"""
        invitation = await send(db)
        # a failed accept rolls back and expires loaded objects
        invitation_id, booking_id = invitation.invitation_id, invitation.booking_id
        await applications.apply_for_job(db, booking_id, CLEANER_2, now=T0 + minutes(1))

        with pytest.raises(NotFound):
            await invitations.accept_invitation(db, invitation_id, CLEANER, now=T0 + minutes(2))

        found = await invitations.load_invitation(db, invitation_id)
        assert found.status == InvitationStatus.CANCELLED
        booking = await lifecycle.load_booking(db, booking_id)
        assert booking.assigned_cleaner_email == CLEANER_2


class TestDeclineInvitation:
    """Tests for the cleaner declining an invitation"""

    async def test_decline_cancels_open_booking(self, db):
        invitation = await send(db)

        declined = await invitations.decline_invitation(
            db, invitation.invitation_id, CLEANER, "Fully booked", now=T0 + minutes(2)
        )

        assert declined.status == InvitationStatus.DECLINED
        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "Fully booked"

    async def test_decline_default_reason(self, db):
        invitation = await send(db)
        await invitations.decline_invitation(db, invitation.invitation_id, CLEANER, now=T0)

        booking = await lifecycle.load_booking(db, invitation.booking_id)
        assert booking.cancellation_reason == lifecycle.DECLINED_REASON

    async def test_decline_after_marketplace_match_fails(self, db):
        """The invitation is already closed once the booking is taken elsewhere"""
        invitation = await send(db)
        invitation_id, booking_id = invitation.invitation_id, invitation.booking_id
        await applications.apply_for_job(db, booking_id, CLEANER_2, now=T0)

        with pytest.raises(NotFound):
            await invitations.decline_invitation(db, invitation_id, CLEANER, now=T0)

        booking = await lifecycle.load_booking(db, booking_id)
        assert booking.status == BookingStatus.ACCEPTED
        assert booking.assigned_cleaner_email == CLEANER_2

    async def test_decline_after_accept_fails(self, db):
        invitation = await send(db)
        await invitations.accept_invitation(db, invitation.invitation_id, CLEANER, now=T0)

        with pytest.raises(NotFound):
            await invitations.decline_invitation(db, invitation.invitation_id, CLEANER, now=T0)


class TestCleanerInvitations:
    """Tests for the cleaner's pending list"""

    async def test_lists_only_live_pending_invitations(self, db):
        first = await send(db)
        second = await invitations.send_invitation(
            db, CLIENT, invitation_request(CLEANER, location="9 Hill Road, Nairobi"), now=T0 + minutes(5)
        )
        declined = await send(db)
        await invitations.decline_invitation(db, declined.invitation_id, CLEANER, now=T0)

        pending = await invitations.get_cleaner_invitations(db, CLEANER, now=T0 + minutes(10))
        assert [i.invitation_id for i in pending] == [second.invitation_id, first.invitation_id]

        # first expires at T0+15, second at T0+20
        pending = await invitations.get_cleaner_invitations(db, CLEANER, now=T0 + minutes(17))
        assert [i.invitation_id for i in pending] == [second.invitation_id]

    async def test_other_cleaner_sees_nothing(self, db):
        await send(db)

        assert await invitations.get_cleaner_invitations(db, CLEANER_2, now=T0) == []


class TestMarketplaceMatch:
    """Tests for an invitation whose booking is won through the marketplace"""

    @pytest.fixture(name="redis_mock")
    def redis_mock_fixture(self, monkeypatch):
        mock = AsyncMock()
        monkeypatch.setattr(expiry_worker, "redis_client", mock)
        return mock

    async def test_auto_accept_cancels_pending_invitation(self, db, redis_mock):
        """The invited cleaner stops seeing it and the client sees it cancelled, not expired"""
        invitation = await send(db)
        invitation_id = invitation.invitation_id

        _, auto_accepted = await applications.apply_for_job(
            db, invitation.booking_id, CLEANER_2, now=T0 + minutes(1)
        )

        assert auto_accepted is True
        assert await invitations.get_cleaner_invitations(db, CLEANER, now=T0 + minutes(2)) == []
        found = await invitations.get_invitation_status(db, invitation_id, CLIENT, now=T0 + minutes(20))
        assert found.status == InvitationStatus.CANCELLED
        redis_mock.zrem.assert_awaited_with(expiry_worker.EXPIRY_ZSET, invitation_id)

    async def test_stale_invitation_accept_is_detected(self, db, session_factory):
        """An accept based on a read from before the marketplace match fails the version check"""
        invitation = await send(db)
        invitation_id, booking_id = invitation.invitation_id, invitation.booking_id

        async with session_factory() as stale:
            pending = await invitations.load_invitation(stale, invitation_id)
            booking = await lifecycle.load_booking(stale, booking_id)
            await applications.apply_for_job(db, booking_id, CLEANER_2, now=T0 + minutes(1))

            # still sees an open booking and a pending invitation
            lifecycle.assign(booking, lifecycle.Assignment(CLEANER, lifecycle.SOURCE_INVITATION), T0 + minutes(2))
            pending.status = InvitationStatus.ACCEPTED

            with pytest.raises(StaleDataError):
                await stale.flush()
            await stale.rollback()

        booking = await lifecycle.load_booking(db, booking_id)
        assert booking.status == BookingStatus.ACCEPTED
        assert booking.assigned_cleaner_email == CLEANER_2
