"""Error taxonomy for curation leasing and session coordination."""

from __future__ import annotations

from typing import Dict


class CurationError(RuntimeError):
    """Structured curation error carrying a stable machine-readable code."""

    code = "curation_error"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None):
        if code:
            self.code = str(code)
        self.message = str(message)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotEligibleError(CurationError):
    """Allocate found nothing it could lease. Retry later or widen filters."""

    code = "not_eligible"
    http_status = 404


class LeaseConflictError(CurationError):
    """The item is leased by another session."""

    code = "lease_conflict"
    http_status = 409


class SessionNotActiveError(CurationError):
    """Checkpoint/Finalize/Decision on a session that is not in progress."""

    code = "session_not_active"
    http_status = 409

    def __init__(self, session_id: str, status: str | None = None):
        self.session_id = session_id
        self.status = status
        detail = f"Session {session_id} is not active"
        if status:
            detail += f" (status={status})"
        super().__init__(detail)


class SessionNotFoundError(CurationError):
    code = "session_not_found"
    http_status = 404

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class InvalidTransitionError(CurationError):
    """Finalize called with an action the state machine does not know."""

    code = "invalid_transition"
    http_status = 400


class StoreUnavailableError(CurationError):
    """Transient store failure. Callers retry with backoff."""

    code = "store_unavailable"
    http_status = 503
