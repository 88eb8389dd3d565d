"""Error kinds surfaced by Downto operations."""

from __future__ import annotations


class DowntoError(Exception):
    """Base class for every user-visible failure."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(DowntoError):
    kind = "invalid_input"
    status_code = 400


class NotFound(DowntoError):
    kind = "not_found"
    status_code = 404


class Forbidden(DowntoError):
    kind = "forbidden"
    status_code = 403


class Conflict(DowntoError):
    kind = "conflict"
    status_code = 409


class CapacityExceeded(Conflict):
    kind = "capacity_exceeded"


class SquadFull(Conflict):
    kind = "full"


class StaleDate(Conflict):
    kind = "stale_date"


class AlreadyExists(DowntoError):
    """Uniqueness violation. Resolved into the success path by callers that need idempotency."""

    kind = "already_exists"
    status_code = 409


__all__ = [
    "DowntoError",
    "InvalidInput",
    "NotFound",
    "Forbidden",
    "Conflict",
    "CapacityExceeded",
    "SquadFull",
    "StaleDate",
    "AlreadyExists",
]
