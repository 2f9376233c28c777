from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None

    status_code = 400


@dataclass
class BookingValidationError(DomainError):
    title: str = "Validation Error"
    type: str = "https://example.com/problems/validation-error"

    status_code = 422


@dataclass
class BookingConflictError(DomainError):
    title: str = "Conflict"
    type: str = "https://example.com/problems/conflict"

    status_code = 409


@dataclass
class BookingForbiddenError(BookingConflictError):
    title: str = "Forbidden"
    type: str = "https://example.com/problems/forbidden"

    status_code = 403


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"

    status_code = 404
