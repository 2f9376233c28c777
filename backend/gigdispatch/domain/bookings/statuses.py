PENDING = "pending"
ACCEPTED = "accepted"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, ACCEPTED, IN_PROGRESS, COMPLETED, CANCELLED)

BOOKING_TRANSITIONS = {
    PENDING: {ACCEPTED, CANCELLED},
    ACCEPTED: {PENDING, IN_PROGRESS, CANCELLED},
    IN_PROGRESS: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
}


def sources_of(target: str) -> frozenset[str]:
    return frozenset(source for source, targets in BOOKING_TRANSITIONS.items() if target in targets)


def _only_source(target: str) -> str:
    (source,) = sources_of(target)
    return source


# the guard sets below feed the WHERE clauses of the lifecycle UPDATEs
OPEN_STATUSES = sources_of(ACCEPTED)
REOPEN_STATUSES = sources_of(PENDING)
CANCELLABLE_STATUSES = sources_of(CANCELLED)
# worker-driven progress; the value is the only status the target may be entered from
PROGRESS_SOURCES = {target: _only_source(target) for target in (IN_PROGRESS, COMPLETED)}

ACTIVE_STATUSES = {ACCEPTED, IN_PROGRESS}
DELETABLE_STATUSES = {PENDING, ACCEPTED, CANCELLED}

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"

WORKER_AVAILABLE = "available"
WORKER_BUSY = "busy"
