"""Order status graph shared by the admin update path and the order service."""

from typing import Dict, FrozenSet, List

PENDING = "pending"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
COMPLETED = "completed"

STATUSES = (PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED, COMPLETED)

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, SHIPPED, CANCELLED, COMPLETED}),
    PROCESSING: frozenset({SHIPPED, DELIVERED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED, COMPLETED}),
    DELIVERED: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def allowed_transitions(status: str) -> List[str]:
    # ordered like STATUSES so error payloads are stable
    targets = TRANSITIONS.get(status, frozenset())
    return [s for s in STATUSES if s in targets]


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL
