import uuid
from datetime import datetime, timezone

from .config import SERVICE_NAME
from .rabbitmq import publisher


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "source": SERVICE_NAME,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


async def emit(event_type: str, data: dict):
    await publisher.publish(build_event(event_type, data))


def booking_data(booking) -> dict:
    return {
        "booking_id": booking.booking_id,
        "client_email": booking.client_email,
        "assigned_cleaner_email": booking.assigned_cleaner_email,
        "status": booking.status,
        "payment_status": booking.payment_status,
    }
