import enum

from app.services.errors import DeliveryError


class DeliveryStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


UNASSIGNED = "unassigned"

INTERNAL_STATUSES: frozenset[str] = frozenset(item.value for item in DeliveryStatus)

TERMINAL: frozenset[str] = frozenset(
    {DeliveryStatus.DELIVERED.value, DeliveryStatus.RETURNED.value, DeliveryStatus.CANCELLED.value}
)

# Position along the happy path; terminal states share the last rank.
_PROGRESS_RANK: dict[str, int] = {
    UNASSIGNED: 0,
    DeliveryStatus.ASSIGNED.value: 1,
    DeliveryStatus.PICKED_UP.value: 2,
    DeliveryStatus.IN_TRANSIT.value: 3,
    DeliveryStatus.OUT_FOR_DELIVERY.value: 4,
    DeliveryStatus.DELIVERED.value: 5,
    DeliveryStatus.RETURNED.value: 5,
    DeliveryStatus.CANCELLED.value: 5,
}


def current_status(value: str | None) -> str:
    return value or UNASSIGNED


def is_terminal(value: str | None) -> bool:
    return current_status(value) in TERMINAL


def can_transition(current: str | None, next_status: str) -> bool:
    current_value = current_status(current)
    if next_status == current_value:
        return True
    if current_value in TERMINAL:
        return False
    if next_status == DeliveryStatus.DELIVERY_FAILED.value:
        return True
    if current_value == DeliveryStatus.DELIVERY_FAILED.value:
        # A failed attempt can be retried or closed by the carrier.
        return next_status in INTERNAL_STATUSES
    return _PROGRESS_RANK[next_status] >= _PROGRESS_RANK[current_value]


def ensure_valid_transition(current: str | None, next_status: str) -> None:
    if next_status not in INTERNAL_STATUSES:
        raise DeliveryError(
            status_code=400,
            code="invalid_status",
            message=f"Unknown delivery status: {next_status}",
        )
    if not can_transition(current, next_status):
        raise DeliveryError(
            status_code=409,
            code="invalid_transition",
            message=f"Invalid delivery transition: {current_status(current)} -> {next_status}",
        )
