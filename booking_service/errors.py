class DomainError(Exception):
    """
    Base for every failure the booking core reports to its callers.

    kind is stable and machine readable; status_code is the HTTP equivalent used
    by the exception handler in main.py.
    """

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    kind = "validation_error"
    status_code = 400


class NotFound(DomainError):
    kind = "not_found"
    status_code = 404


class CleanerUnavailable(DomainError):
    kind = "unavailable"
    status_code = 404

    def __init__(self, message: str = "Cleaner not found or not available"):
        super().__init__(message)


class Forbidden(DomainError):
    kind = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class Conflict(DomainError):
    kind = "conflict"
    status_code = 409


class InvalidTransition(Conflict):
    kind = "invalid_transition"

    def __init__(self, current: str, requested: str, reason: str | None = None):
        message = f"Cannot change status from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.requested = requested


class AlreadyApplied(Conflict):
    kind = "already_applied"

    def __init__(self, message: str = "You have already applied for this job"):
        super().__init__(message)


class DuplicateKey(Conflict):
    kind = "duplicate_key"
