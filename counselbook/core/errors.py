"""Error kinds raised by the domain services.

Services never speak HTTP. They raise one of these and the web layer maps
``kind`` onto a status code (see ``counselbook.main``).
"""


class DomainError(Exception):
    kind = "internal"

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class NotFound(DomainError):
    kind = "not_found"


class Conflict(DomainError):
    kind = "conflict"


class Forbidden(DomainError):
    kind = "forbidden"


class InvalidInput(DomainError):
    kind = "invalid_input"


class Internal(DomainError):
    kind = "internal"


SLOT_TAKEN = "This slot is no longer available, please choose another time"
CANCEL_WINDOW = "Bookings cannot be cancelled less than {hours} hours before the session"
