"""Order and kitchen-item state machines.

Order statuses move only along ``ORDER_TRANSITIONS``; everything else raises
``InvalidStateError`` without touching the order.
"""
import enum

from pos_common.errors import InvalidStateError


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    BILL_GENERATED = "Bill Generated"
    CREDIT = "Credit"
    COMPLETE = "Complete"
    CANCELLED = "Cancelled"


class OrderType(str, enum.Enum):
    DINE_IN = "Dine In"
    TAKE_AWAY = "Take Away"
    DELIVERY = "Delivery"


class KitchenStatus(str, enum.Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"


ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.RUNNING, OrderStatus.CANCELLED},
    OrderStatus.RUNNING: {OrderStatus.CANCELLED, OrderStatus.BILL_GENERATED, OrderStatus.CREDIT},
    OrderStatus.BILL_GENERATED: {OrderStatus.COMPLETE},
    OrderStatus.CREDIT: set(),
    OrderStatus.COMPLETE: set(),
    OrderStatus.CANCELLED: set(),
}

# Staff may pick these from the status dropdown; the rest are driven by billing
MANUAL_TARGETS = {OrderStatus.RUNNING, OrderStatus.CANCELLED}

EDITABLE = {OrderStatus.PENDING, OrderStatus.RUNNING}
TERMINAL = {OrderStatus.CREDIT, OrderStatus.COMPLETE, OrderStatus.CANCELLED}
NEEDS_ITEMS = {OrderStatus.BILL_GENERATED, OrderStatus.COMPLETE}
# Entering one of these releases the dine-in table
RELEASES_TABLE = {OrderStatus.COMPLETE, OrderStatus.CREDIT, OrderStatus.CANCELLED}
HOLDS_TABLE = {OrderStatus.PENDING, OrderStatus.RUNNING, OrderStatus.BILL_GENERATED}
DELETABLE = {OrderStatus.PENDING, OrderStatus.CANCELLED}
INITIAL = {OrderStatus.PENDING, OrderStatus.RUNNING}

KITCHEN_FLOW = [
    KitchenStatus.PENDING,
    KitchenStatus.PREPARING,
    KitchenStatus.READY,
    KitchenStatus.COMPLETED,
]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[OrderStatus(current)]


def check_transition(current, target, item_count: int):
    current = OrderStatus(current)
    target = OrderStatus(target)
    if not can_transition(current, target):
        raise InvalidStateError(f"Cannot change order status from '{current.value}' to '{target.value}'")
    if target in NEEDS_ITEMS and item_count < 1:
        raise InvalidStateError(f"Order needs at least one item before it can become '{target.value}'")
    return target


def check_manual_transition(current, target, item_count: int):
    target = OrderStatus(target)
    if target not in MANUAL_TARGETS:
        raise InvalidStateError(
            f"Status '{target.value}' is set by billing and payment, not manually"
        )
    return check_transition(current, target, item_count)


def check_editable(current):
    current = OrderStatus(current)
    if current not in EDITABLE:
        raise InvalidStateError(f"Order in status '{current.value}' can no longer be edited")


def next_kitchen_status(current):
    idx = KITCHEN_FLOW.index(KitchenStatus(current))
    if idx + 1 < len(KITCHEN_FLOW):
        return KITCHEN_FLOW[idx + 1]
    return None


def check_kitchen_transition(current, target):
    target = KitchenStatus(target)
    if next_kitchen_status(current) != target:
        raise InvalidStateError(
            f"Kitchen status can only move one step forward (from '{KitchenStatus(current).value}')"
        )
    return target


def kitchen_progress(statuses) -> float:
    statuses = list(statuses)
    if not statuses:
        return 0.0
    done = sum(1 for s in statuses if KitchenStatus(s) == KitchenStatus.COMPLETED)
    return done / len(statuses)
