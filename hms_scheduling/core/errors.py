"""Error taxonomy shared by the availability, hold and booking paths.

``Conflict`` and ``Expired`` are expected outcomes of racing users and are
surfaced to callers as such; only ``Internal`` indicates a fault.
"""

class SchedulingError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body

class InvalidRequest(SchedulingError):
    status_code = 400
    code = "invalid_request"

    def __init__(self, message: str | None = None, fields: dict[str, str] | None = None):
        super().__init__(message or "Invalid request", fields=fields or {})

class NotFound(SchedulingError):
    status_code = 404
    code = "not_found"

class Conflict(SchedulingError):
    status_code = 409
    code = "slot_unavailable"

class Expired(SchedulingError):
    status_code = 409
    code = "hold_expired"

class Internal(SchedulingError):
    status_code = 500
    code = "internal_error"

class HoldNotFound(NotFound):
    code = "hold_not_found"

class SlotTaken(Conflict):
    code = "slot_taken"
