import os

SERVICE_NAME = "booking-service"

DATABASE_URL = os.getenv("BOOKING_DB")
DB_ECHO = (os.getenv("DB_ECHO") or "").lower() in ("1", "true", "yes")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
REDIS_URL = os.getenv("REDIS_URL")  # optional, enables the invitation expiry index

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"

INVITATION_TTL_MINUTES = int(os.getenv("INVITATION_TTL_MINUTES") or "15")
OPEN_JOB_TTL_MINUTES = int(os.getenv("OPEN_JOB_TTL_MINUTES") or "15")

EXPIRY_POLL_SECONDS = float(os.getenv("EXPIRY_POLL_SECONDS") or "2.0")
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS") or "60")

APPLY_MAX_RETRIES = int(os.getenv("APPLY_MAX_RETRIES") or "3")
