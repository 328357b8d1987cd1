"""
Order lifecycle

Orders move strictly forward through ORDER_FLOW; cancellation is a side exit
from any non-terminal status. Every transition is a compare-and-swap on the
order document: the required predecessor status (and, for staff steps, the
assignment) is part of the update filter, so a stale or concurrent attempt
changes nothing and reports False.
"""
import logging
from typing import Optional

from database import compare_and_set, create_document, utcnow
from schemas import TimelineEntry

logger = logging.getLogger("tailorspace.orders")

ORDER_FLOW = (
    "booked",
    "pickup_scheduled",
    "collected",
    "in_progress",
    "ready",
    "out_for_delivery",
    "delivered",
    "completed",
)
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})
NON_TERMINAL_STATUSES = tuple(s for s in ORDER_FLOW if s not in TERMINAL_STATUSES)

# role -> (assignment field, required status, resulting status)
ASSIGNMENTS = {
    "runner": ("runner_id", "booked", "pickup_scheduled"),
    "tailor": ("tailor_id", "collected", "in_progress"),
}

# Target status -> role of the assigned staff member allowed to set it.
# Targets reached by accepting a job are handled by ASSIGNMENTS instead.
STEP_OWNERS = {
    "collected": "runner",
    "ready": "tailor",
    "out_for_delivery": "runner",
    "delivered": "runner",
    "completed": "admin",
}

STEP_TIMESTAMPS = {
    "collected": "collected_at",
    "completed": "completed_at",
}


class TransitionError(ValueError):
    """Raised for a transition that can never be valid, whatever the order's state."""


def next_status(status: str) -> Optional[str]:
    if status in TERMINAL_STATUSES or status not in ORDER_FLOW:
        return None
    return ORDER_FLOW[ORDER_FLOW.index(status) + 1]


def previous_status(status: str) -> Optional[str]:
    if status not in ORDER_FLOW or status == ORDER_FLOW[0]:
        return None
    return ORDER_FLOW[ORDER_FLOW.index(status) - 1]


def record_timeline(order_id: str, status: str, actor: Optional[dict], notes: Optional[str] = None) -> str:
    entry = TimelineEntry(
        order_id=order_id,
        status=status,
        actor_id=actor["_id"] if actor else None,
        actor_role=actor.get("role") if actor else None,
        notes=notes,
    )
    return create_document("order_timeline", entry)


def accept_job(order_id: str, staff: dict) -> bool:
    """Claim an unassigned order for a runner or tailor.

    Succeeds only while the assignment field is null and the order sits in
    the status that precedes the job.
    """
    role = staff.get("role")
    if role not in ASSIGNMENTS:
        raise TransitionError(f"Role {role!r} cannot accept jobs")
    field, required, target = ASSIGNMENTS[role]
    ok = compare_and_set(
        "orders",
        order_id,
        expected={field: None, "status": required},
        changes={field: staff["_id"], "status": target},
    )
    if not ok:
        logger.warning("%s %s could not accept order %s", role, staff["_id"], order_id)
        return False
    logger.info("Order %s accepted by %s %s -> %s", order_id, role, staff["_id"], target)
    record_timeline(order_id, target, staff)
    return True


def advance_order(order_id: str, target: str, actor: dict, notes: Optional[str] = None) -> bool:
    """Move an order one step forward to ``target``.

    Staff may only advance orders assigned to them, and only the steps their
    role owns. Admins may take any forward step that is not a job acceptance.
    """
    required = previous_status(target)
    if required is None:
        raise TransitionError(f"{target!r} is not reachable by a forward step")
    if any(target == t for _, _, t in ASSIGNMENTS.values()):
        raise TransitionError(f"{target!r} is reached by accepting the job")

    role = actor.get("role")
    expected = {"status": required}
    if role != "admin":
        owner = STEP_OWNERS.get(target)
        if owner != role:
            raise TransitionError(f"Role {role!r} cannot move an order to {target!r}")
        field = ASSIGNMENTS[role][0]
        expected[field] = actor["_id"]

    changes = {"status": target}
    stamp = STEP_TIMESTAMPS.get(target)
    if stamp:
        changes[stamp] = utcnow()

    if not compare_and_set("orders", order_id, expected=expected, changes=changes):
        logger.warning("Order %s not moved to %s by %s %s", order_id, target, role, actor["_id"])
        return False
    logger.info("Order %s %s -> %s by %s", order_id, required, target, role)
    record_timeline(order_id, target, actor, notes)
    return True


def cancel_order(order_id: str, actor: dict, notes: Optional[str] = None) -> bool:
    ok = compare_and_set(
        "orders",
        order_id,
        expected={"status": {"$in": list(NON_TERMINAL_STATUSES)}},
        changes={"status": "cancelled"},
    )
    if not ok:
        logger.warning("Order %s could not be cancelled", order_id)
        return False
    logger.info("Order %s cancelled by %s", order_id, actor["_id"])
    record_timeline(order_id, "cancelled", actor, notes)
    return True
