from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal, Union

VerificationState = Literal["pending", "verified", "rejected"]
VERIFICATION_STATES = ("pending", "verified", "rejected")
DOCUMENT_FIELDS = ("profile_photo", "certificate", "citizenship", "license")
_CAMEL_ALIASES = {"profilePhoto": "profile_photo"}


@dataclass(frozen=True)
class SimpleVerification:
    status: VerificationState


@dataclass(frozen=True)
class PerDocumentVerification:
    profile_photo: VerificationState = "pending"
    certificate: VerificationState = "pending"
    citizenship: VerificationState = "pending"
    license: VerificationState = "pending"
    overall: VerificationState = "pending"

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


WorkerVerification = Union[SimpleVerification, PerDocumentVerification]


def _state(value: Any) -> VerificationState:
    normalized = str(value or "pending").strip().lower()
    if normalized not in VERIFICATION_STATES:
        raise ValueError(f"invalid_verification_state:{value}")
    return normalized  # type: ignore[return-value]


def parse_verification(raw: Any) -> WorkerVerification:
    if isinstance(raw, (SimpleVerification, PerDocumentVerification)):
        return raw
    if raw is None or isinstance(raw, str):
        return SimpleVerification(status=_state(raw))
    if isinstance(raw, dict):
        values = {_CAMEL_ALIASES.get(key, key): value for key, value in raw.items()}
        return PerDocumentVerification(
            **{name: _state(values.get(name)) for name in DOCUMENT_FIELDS},
            overall=_state(values.get("overall")),
        )
    raise ValueError(f"invalid_verification_shape:{type(raw).__name__}")


def to_per_document(verification: WorkerVerification) -> PerDocumentVerification:
    if isinstance(verification, PerDocumentVerification):
        return verification
    status = verification.status
    return PerDocumentVerification(
        profile_photo=status,
        certificate=status,
        citizenship=status,
        license=status,
        overall=status,
    )


def normalize_verification(raw: Any) -> dict[str, str]:
    return to_per_document(parse_verification(raw)).as_dict()
