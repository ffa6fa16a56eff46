from typing import Dict, FrozenSet
from freshcart.orders.exceptions import InvalidStatusTransition
from freshcart.schema.full_schema import OrderStatus

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.REJECTED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}

# entering one of these gives the ordered quantities back to the shelf
STOCK_RESTORING_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REJECTED})


def is_terminal(status: OrderStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(old: OrderStatus, new: OrderStatus) -> bool:
    if old == new:
        return True
    return new in ALLOWED_TRANSITIONS[old]


def assert_transition(old: OrderStatus, new: OrderStatus) -> None:
    if not can_transition(old, new):
        raise InvalidStatusTransition(old.value, new.value, final=is_terminal(old))


def should_record_copurchase(old: OrderStatus, new: OrderStatus, already_recorded: bool) -> bool:
    """Only the first move into delivered counts."""
    return old != OrderStatus.DELIVERED and new == OrderStatus.DELIVERED and not already_recorded
