from datetime import date as Date, datetime
from typing import List, Literal

from pydantic import BaseModel, Field

ServiceType = Literal["standard", "deep", "move-in", "move-out", "custom"]
Frequency = Literal["once", "weekly", "biweekly", "monthly"]
PropertyType = Literal["apartment", "house", "townhouse", "office"]
PaymentMethod = Literal["mpesa", "paypal", "card", "cash"]


# ---- users ----

class CreateUser(BaseModel):
    email: str
    first_name: str
    last_name: str
    user_type: Literal["client", "cleaner"]
    phone: str | None = None
    avatar: str | None = None
    is_available: bool = True
    rating: float = Field(default=5.0, ge=0, le=5)


class UpdateAvailability(BaseModel):
    is_available: bool


class UserResponse(BaseModel):
    email: str
    first_name: str
    last_name: str
    user_type: str
    phone: str | None = None
    avatar: str | None = None
    is_available: bool
    rating: float
    completed_jobs: int
    bookings_count: int


class PersonSummary(BaseModel):
    email: str
    first_name: str
    last_name: str
    avatar: str | None = None
    phone: str | None = None
    rating: float
    completed_jobs: int


# ---- bookings ----

class Schedule(BaseModel):
    date: Date
    time: str
    frequency: Frequency = "once"


class Location(BaseModel):
    address: str
    city: str
    property_type: PropertyType
    bedrooms: int = Field(ge=0)
    bathrooms: int = Field(ge=0)
    square_footage: int = Field(default=0, ge=0)
    special_instructions: str | None = None


class Extras(BaseModel):
    deep_cleaning: bool = False
    window_cleaning: bool = False
    laundry: bool = False
    fridge_cleaning: bool = False
    oven_cleaning: bool = False
    balcony_cleaning: bool = False
    carpet_cleaning: bool = False


class CreateBookingRequest(BaseModel):
    service_type: ServiceType
    schedule: Schedule
    location: Location
    extras: Extras = Field(default_factory=Extras)
    total_price: int = Field(gt=0)
    client_notes: str | None = None


class Payment(BaseModel):
    status: str
    method: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None


class ApplicationResponse(BaseModel):
    cleaner_email: str
    cleaner: PersonSummary | None = None
    status: str
    proposed_price: int
    message: str | None = None
    applied_at: datetime


class BookingResponse(BaseModel):
    booking_id: str
    client_email: str
    client: PersonSummary | None = None
    service_type: str
    schedule: Schedule
    location: Location
    extras: Extras
    total_price: int
    status: str
    payment: Payment
    assigned_cleaner_email: str | None = None
    assigned_cleaner: PersonSummary | None = None
    applications: List[ApplicationResponse] = []
    client_notes: str | None = None
    cleaner_notes: str | None = None
    invitation_sent: bool = False
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime


class CancelBookingRequest(BaseModel):
    reason: str | None = None


class ApplyRequest(BaseModel):
    proposed_price: int | None = Field(default=None, gt=0)
    message: str | None = None


class ApplyResponse(BaseModel):
    message: str
    auto_accepted: bool
    booking: BookingResponse


class AcceptApplicationRequest(BaseModel):
    cleaner_email: str


class CompletePaymentRequest(BaseModel):
    payment_method: PaymentMethod = "mpesa"
    transaction_id: str | None = None


class UpdateJobStatusRequest(BaseModel):
    # validated by the lifecycle so an illegal target reports the current status
    status: str
    notes: str | None = None


class BookingStats(BaseModel):
    total: int
    pending: int
    completed: int
    total_spent: int


# ---- invitations ----

class InvitationBookingDetails(BaseModel):
    service_type: ServiceType
    date: Date
    time: str
    location: str
    city: str | None = None
    total_price: int = Field(gt=0)
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)


class SendInvitationRequest(BaseModel):
    cleaner_email: str
    booking_details: InvitationBookingDetails


class SendInvitationResponse(BaseModel):
    invitation_id: str
    booking_id: str
    cleaner: PersonSummary
    expires_at: datetime


class DeclineInvitationRequest(BaseModel):
    reason: str | None = None


class InvitationStatusResponse(BaseModel):
    invitation_id: str
    booking_id: str
    status: str
    cleaner: PersonSummary | None = None
    responded_at: datetime | None = None
    expires_at: datetime


class InvitationResponse(BaseModel):
    invitation_id: str
    booking_id: str
    client_email: str
    client: PersonSummary | None = None
    cleaner_email: str
    status: str
    booking_details: dict
    expires_at: datetime
    sent_at: datetime
    responded_at: datetime | None = None


# ---- system ----

class SweepResponse(BaseModel):
    expired_invitations: int
    cancelled_bookings: int
