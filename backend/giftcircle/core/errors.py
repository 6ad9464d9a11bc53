"""Domain errors raised by the GiftCircle services.

Services never raise HTTP errors. Each failure the core must distinguish has
its own class; the API layer maps the families below to status codes in one
place (``giftcircle.api.errors``).
"""


class GiftCircleError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ── Validation: rejected before any write ───────────────────────────────────

class ValidationFailed(GiftCircleError):
    code = "validation_failed"


class EmptyText(ValidationFailed):
    code = "empty_text"


class InvalidAmount(ValidationFailed):
    code = "invalid_amount"


class ExceedsTarget(ValidationFailed):
    code = "exceeds_target"

    def __init__(self, message: str, remaining: float, details: dict | None = None):
        super().__init__(message, {"remaining": remaining, **(details or {})})
        self.remaining = remaining


class InvalidReference(ValidationFailed):
    code = "invalid_reference"


class InvalidUsername(ValidationFailed):
    code = "invalid_username"


class NotFound(GiftCircleError):
    code = "not_found"


# ── Conflict: uniqueness violations ─────────────────────────────────────────

class Conflict(GiftCircleError):
    """A uniqueness violation.

    ``benign`` conflicts mean the desired end state already exists and the
    caller should proceed as if the operation succeeded.
    """

    code = "conflict"
    benign = True


class DuplicateEdge(Conflict):
    code = "duplicate_edge"


class AlreadyMember(Conflict):
    code = "already_member"


class AlreadyReserved(Conflict):
    code = "already_reserved"


class UsernameTaken(Conflict):
    code = "username_taken"
    benign = False


# ── Authorization: always a hard stop ───────────────────────────────────────

class NotAuthorized(GiftCircleError):
    code = "not_authorized"


class SelfReservation(NotAuthorized):
    code = "self_reservation"


class CannotRemoveCreator(NotAuthorized):
    code = "cannot_remove_creator"


class CreatorCannotLeave(NotAuthorized):
    code = "creator_cannot_leave"


# ── Partial multi-write and transient failures ──────────────────────────────

class PartialWriteError(GiftCircleError):
    """The first write of a composite operation landed, a later one did not.

    Retrying the whole operation is wrong: ``completed_step`` already happened.
    """

    code = "reconciliation_needed"

    def __init__(
        self,
        message: str,
        completed_step: str,
        failed_step: str,
        details: dict | None = None,
    ):
        super().__init__(
            message,
            {"completed_step": completed_step, "failed_step": failed_step, **(details or {})},
        )
        self.completed_step = completed_step
        self.failed_step = failed_step


class TransientStoreError(GiftCircleError):
    code = "transient"
