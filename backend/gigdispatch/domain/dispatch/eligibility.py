from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)

VERIFIED = "verified"


class CandidateWorker(Protocol):
    service_categories: list[str] | None
    category_verification_status: dict[str, str] | None
    is_active: bool
    status: str


W = TypeVar("W", bound=CandidateWorker)


def normalize_category(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


class CategoryResolver:
    """Collapses category spellings to one canonical token.

    The table maps a canonical name to its accepted variants. Anything not in
    the table resolves to its own normalised form.
    """

    def __init__(self, synonyms: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lookup: dict[str, str] = {}
        for canonical, variants in (synonyms or {}).items():
            canonical_key = normalize_category(canonical)
            self._lookup[canonical_key] = canonical_key
            for variant in variants:
                self._lookup[normalize_category(variant)] = canonical_key

    def canonical(self, value: str | None) -> str:
        normalized = normalize_category(value)
        return self._lookup.get(normalized, normalized)

    def variants(self, value: str | None) -> set[str]:
        canonical = self.canonical(value)
        known = {key for key, target in self._lookup.items() if target == canonical}
        return known | {canonical}

    def matches(self, left: str | None, right: str | None) -> bool:
        return self.canonical(left) == self.canonical(right)


@dataclass
class EligibilityResult:
    eligible: list = field(default_factory=list)
    unverified: list = field(default_factory=list)


def offers_category(resolver: CategoryResolver, worker: CandidateWorker, category: str) -> bool:
    target = resolver.canonical(category)
    return any(resolver.canonical(entry) == target for entry in (worker.service_categories or []))


def is_category_verified(resolver: CategoryResolver, worker: CandidateWorker, category: str) -> bool:
    statuses = worker.category_verification_status or {}
    if statuses.get(category) == VERIFIED:
        return True
    target = resolver.canonical(category)
    return any(
        resolver.canonical(key) == target and str(value).lower() == VERIFIED for key, value in statuses.items()
    )


def filter_eligible(
    resolver: CategoryResolver,
    category: str,
    candidates: Sequence[W],
) -> EligibilityResult:
    result = EligibilityResult()
    for worker in candidates:
        if not offers_category(resolver, worker, category):
            continue
        if not worker.is_active or worker.status != "available":
            continue
        if is_category_verified(resolver, worker, category):
            result.eligible.append(worker)
        else:
            result.unverified.append(worker)
    if result.unverified:
        logger.info(
            "dispatch_unverified_workers",
            extra={"extra": {"category": resolver.canonical(category), "count": len(result.unverified)}},
        )
    return result
