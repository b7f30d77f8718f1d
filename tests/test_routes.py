"""
Tests for the HTTP surface: identity, roles, error mapping and an end-to-end flow
"""

import asyncio
from unittest.mock import AsyncMock

from jose import jwt

from booking_service import main, security

from factories import ADMIN, BUSY_CLEANER, CLEANER, CLEANER_2, CLIENT, OTHER_CLIENT, as_user, booking_payload

CLIENT_H = as_user(CLIENT, "client")
CLEANER_H = as_user(CLEANER, "cleaner")
CLEANER_2_H = as_user(CLEANER_2, "cleaner")


def invitation_payload(cleaner_email=CLEANER, **details):
    booking_details = {
        "service_type": "standard",
        "date": "2026-11-20",
        "time": "09:00",
        "location": "4 Garden Lane, Mombasa",
        "total_price": 4000,
        "bedrooms": 2,
        "bathrooms": 1,
    }
    booking_details.update(details)
    return {"cleaner_email": cleaner_email, "booking_details": booking_details}


async def create_booking(api, **overrides):
    res = await api.post("/bookings", json=booking_payload(**overrides), headers=CLIENT_H)
    assert res.status_code == 200, res.text
    return res.json()["booking_id"]


class TestIdentity:
    """Tests for identity resolution and role checks"""

    async def test_health_is_public(self, api):
        res = await api.get("/health")

        assert res.status_code == 200
        assert res.json() == {"status": "ok", "service": "booking-service"}

    async def test_missing_identity(self, api):
        res = await api.get("/bookings/my-bookings")

        assert res.status_code == 401

    async def test_wrong_role(self, api):
        res = await api.post("/bookings", json=booking_payload(), headers=CLEANER_H)

        assert res.status_code == 403

    async def test_identity_without_roles(self, api):
        """Gateway headers carrying a user but no roles are refused with a header-neutral message"""
        res = await api.post("/bookings", json=booking_payload(), headers={"X-User-Sub": CLIENT})

        assert res.status_code == 403
        assert res.json()["detail"] == "No roles supplied for this user"

    async def test_request_id_is_echoed(self, api):
        res = await api.get("/health", headers={"X-Request-Id": "req-42"})

        assert res.headers["X-Request-Id"] == "req-42"

    async def test_bearer_token_when_secret_configured(self, api, monkeypatch):
        monkeypatch.setattr(security, "JWT_SECRET", "test-secret")
        token = jwt.encode({"sub": CLIENT, "roles": ["client"]}, "test-secret", algorithm="HS256")

        ok = await api.get("/bookings/my-bookings", headers={"Authorization": f"Bearer {token}"})
        forged = await api.get("/bookings/my-bookings", headers={"Authorization": "Bearer not-a-token"})
        headers_only = await api.get("/bookings/my-bookings", headers=CLIENT_H)

        assert ok.status_code == 200
        assert forged.status_code == 401
        assert headers_only.status_code == 401


class TestUsers:
    """Tests for profile routes"""

    async def test_create_own_profile(self, api):
        payload = {"email": "new@example.com", "first_name": "Nia", "last_name": "New", "user_type": "cleaner"}

        res = await api.post("/users", json=payload, headers=as_user("new@example.com", "cleaner"))

        assert res.status_code == 200
        assert res.json()["rating"] == 5.0
        assert res.json()["completed_jobs"] == 0

    async def test_duplicate_profile(self, api):
        payload = {"email": CLIENT, "first_name": "Carla", "last_name": "Client", "user_type": "client"}

        res = await api.post("/users", json=payload, headers=CLIENT_H)

        assert res.status_code == 409
        assert res.json()["kind"] == "duplicate_key"

    async def test_cannot_create_someone_else(self, api):
        payload = {"email": "x@example.com", "first_name": "X", "last_name": "Y", "user_type": "client"}

        res = await api.post("/users", json=payload, headers=CLIENT_H)

        assert res.status_code == 403

    async def test_availability_and_listing(self, api):
        res = await api.put(f"/users/{CLEANER}/availability", json={"is_available": False}, headers=CLEANER_H)
        assert res.status_code == 200
        assert res.json()["is_available"] is False

        res = await api.get("/cleaners/available", headers=CLIENT_H)
        assert [c["email"] for c in res.json()] == [CLEANER_2]

    async def test_cannot_change_other_cleaner_availability(self, api):
        res = await api.put(f"/users/{CLEANER_2}/availability", json={"is_available": False}, headers=CLEANER_H)

        assert res.status_code == 403
        assert res.json()["kind"] == "forbidden"


class TestErrorMapping:
    """Tests for domain errors rendered as HTTP responses"""

    async def test_unknown_booking(self, api):
        res = await api.get("/bookings/missing", headers=CLIENT_H)

        assert res.status_code == 404
        assert res.json() == {"detail": "Booking not found", "kind": "not_found"}

    async def test_duplicate_application(self, api):
        booking_id = await create_booking(api)
        await api.post(f"/bookings/{booking_id}/apply", json={}, headers=CLEANER_H)

        res = await api.post(f"/bookings/{booking_id}/apply", json={}, headers=CLEANER_H)

        assert res.status_code == 409
        assert res.json()["kind"] == "already_applied"

    async def test_payment_before_match(self, api):
        booking_id = await create_booking(api)

        res = await api.patch(f"/bookings/{booking_id}/complete-payment", json={}, headers=CLIENT_H)

        assert res.status_code == 409
        body = res.json()
        assert body["kind"] == "invalid_transition"
        assert "pending-cleaner" in body["detail"]

    async def test_unavailable_cleaner(self, api):
        res = await api.post("/invitations/send", json=invitation_payload(BUSY_CLEANER), headers=CLIENT_H)

        assert res.status_code == 404
        assert res.json()["kind"] == "unavailable"

    async def test_invitation_without_city(self, api):
        res = await api.post("/invitations/send", json=invitation_payload(location="4 Garden Lane"), headers=CLIENT_H)

        assert res.status_code == 400
        assert res.json()["kind"] == "validation_error"

    async def test_invitation_status_of_other_client(self, api):
        res = await api.post("/invitations/send", json=invitation_payload(), headers=CLIENT_H)
        invitation_id = res.json()["invitation_id"]

        res = await api.get(f"/invitations/status/{invitation_id}", headers=as_user(OTHER_CLIENT, "client"))

        assert res.status_code == 403
        assert res.json()["kind"] == "forbidden"

    async def test_request_validation(self, api):
        res = await api.post("/bookings", json=booking_payload(total_price=0), headers=CLIENT_H)

        assert res.status_code == 422


class TestMarketplaceFlow:
    """End-to-end: post, apply, override, pay, work, complete"""

    async def test_full_flow(self, api):
        booking_id = await create_booking(api)

        res = await api.get("/bookings/available-jobs", params={"city": "nairobi"}, headers=CLEANER_H)
        assert [j["booking_id"] for j in res.json()] == [booking_id]

        res = await api.post(f"/bookings/{booking_id}/apply", json={"message": "Free that day"}, headers=CLEANER_H)
        assert res.status_code == 200
        assert res.json()["auto_accepted"] is True
        assert res.json()["booking"]["assigned_cleaner"]["email"] == CLEANER

        res = await api.post(f"/bookings/{booking_id}/apply", json={"proposed_price": 3000}, headers=CLEANER_2_H)
        assert res.json()["auto_accepted"] is False

        res = await api.get(f"/bookings/{booking_id}/applications", headers=CLIENT_H)
        assert [a["status"] for a in res.json()] == ["accepted", "pending"]

        res = await api.patch(
            f"/bookings/{booking_id}/accept-cleaner", json={"cleaner_email": CLEANER_2}, headers=CLIENT_H
        )
        assert res.json()["assigned_cleaner_email"] == CLEANER_2

        res = await api.patch(
            f"/bookings/{booking_id}/complete-payment",
            json={"payment_method": "card", "transaction_id": "CARD-1"},
            headers=CLIENT_H,
        )
        assert res.json()["status"] == "confirmed"
        assert res.json()["payment"]["status"] == "paid"

        res = await api.get("/bookings/cleaner/my-jobs", headers=CLEANER_2_H)
        assert [j["booking_id"] for j in res.json()] == [booking_id]

        res = await api.patch(f"/bookings/{booking_id}/status", json={"status": "in-progress"}, headers=CLEANER_2_H)
        assert res.json()["status"] == "in-progress"
        res = await api.patch(f"/bookings/{booking_id}/status", json={"status": "completed"}, headers=CLEANER_2_H)
        assert res.json()["status"] == "completed"

        res = await api.get(f"/users/{CLEANER_2}", headers=CLIENT_H)
        assert res.json()["completed_jobs"] == 1

        res = await api.get("/bookings/stats/dashboard", headers=CLIENT_H)
        assert res.json() == {"total": 1, "pending": 0, "completed": 1, "total_spent": 3500}


class TestInvitationFlow:
    """End-to-end for direct invitations"""

    async def test_invite_and_accept(self, api):
        res = await api.post("/invitations/send", json=invitation_payload(), headers=CLIENT_H)
        assert res.status_code == 200
        sent = res.json()
        assert sent["cleaner"]["email"] == CLEANER

        res = await api.get("/invitations/cleaner/pending", headers=CLEANER_H)
        assert [i["invitation_id"] for i in res.json()] == [sent["invitation_id"]]

        res = await api.patch(f"/invitations/{sent['invitation_id']}/accept", headers=CLEANER_H)
        assert res.json()["status"] == "accepted"

        res = await api.get(f"/bookings/{sent['booking_id']}", headers=CLIENT_H)
        assert res.json()["status"] == "confirmed"

        res = await api.get(f"/invitations/status/{sent['invitation_id']}", headers=CLIENT_H)
        assert res.json()["status"] == "accepted"

    async def test_invite_and_decline_without_body(self, api):
        res = await api.post("/invitations/send", json=invitation_payload(), headers=CLIENT_H)
        sent = res.json()

        res = await api.patch(f"/invitations/{sent['invitation_id']}/decline", headers=CLEANER_H)
        assert res.json()["status"] == "declined"

        res = await api.get(f"/bookings/{sent['booking_id']}", headers=CLIENT_H)
        assert res.json()["status"] == "cancelled"

    async def test_cancel_booking_without_body(self, api):
        booking_id = await create_booking(api)

        res = await api.patch(f"/bookings/{booking_id}/cancel", headers=CLIENT_H)

        assert res.status_code == 200
        assert res.json()["status"] == "cancelled"


class TestSystemSweep:
    """Tests for the admin sweep trigger"""

    async def test_admin_only(self, api):
        res = await api.post("/system/sweep", headers=CLIENT_H)

        assert res.status_code == 403

    async def test_nothing_due(self, api):
        await create_booking(api)

        res = await api.post("/system/sweep", headers=as_user(ADMIN, "admin"))

        assert res.status_code == 200
        assert res.json() == {"expired_invitations": 0, "cancelled_bookings": 0}


class TestShutdown:
    async def test_crashed_expiry_task_does_not_break_shutdown(self, monkeypatch):
        async def crashed():
            raise RuntimeError("worker crashed")

        task = asyncio.create_task(crashed())
        await asyncio.sleep(0)
        monkeypatch.setattr(main, "_stop_event", asyncio.Event())
        monkeypatch.setattr(main, "_expiry_task", task)
        monkeypatch.setattr(main, "publisher", AsyncMock())

        await main.shutdown()

        assert main._stop_event.is_set()
        main.publisher.close.assert_awaited_once()
