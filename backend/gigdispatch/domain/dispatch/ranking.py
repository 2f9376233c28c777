from __future__ import annotations

from math import asin, cos, radians, sin, sqrt
from typing import Protocol

EARTH_RADIUS_KM = 6371.0

BADGE_THRESHOLDS = (
    ("Platinum", 2000),
    ("Gold", 1200),
    ("Silver", 500),
)
DEFAULT_BADGE = "Iron"
BADGE_WEIGHTS = {"Platinum": 4, "Gold": 3, "Silver": 2, "Iron": 1}


class RankedWorker(Protocol):
    badge: str | None
    rating: float
    completed_jobs: int
    rank_score: float


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(sqrt(a))


def badge_for_completed_jobs(completed_jobs: int) -> str:
    for badge, threshold in BADGE_THRESHOLDS:
        if completed_jobs >= threshold:
            return badge
    return DEFAULT_BADGE


def badge_weight(worker: RankedWorker) -> int:
    badge = worker.badge or badge_for_completed_jobs(worker.completed_jobs or 0)
    return BADGE_WEIGHTS.get(badge, BADGE_WEIGHTS[DEFAULT_BADGE])


def priority_score(worker: RankedWorker) -> float:
    if worker.rank_score and worker.rank_score > 0:
        return float(worker.rank_score)
    return badge_weight(worker) * 100 + (worker.rating or 0.0) * 10


def rank_score(rating: float, total_reviews: int, completed_jobs: int) -> float:
    return rating * 20 + total_reviews * 2 + completed_jobs * 0.5
