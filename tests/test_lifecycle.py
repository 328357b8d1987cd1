"""
Tests for order status transitions and the compare-and-swap assignment guard.
"""
import pytest

import database
from lifecycle import (
    ORDER_FLOW,
    TransitionError,
    accept_job,
    advance_order,
    cancel_order,
    next_status,
)


def status_of(order_id):
    return database.get_document_by_id("orders", order_id)["status"]


def test_flow_is_strictly_forward():
    assert next_status("booked") == "pickup_scheduled"
    assert next_status("delivered") == "completed"
    assert next_status("completed") is None
    assert next_status("cancelled") is None
    assert ORDER_FLOW[0] == "booked"


def test_runner_accept_assigns_and_schedules(make_user, make_order):
    runner = make_user("runner")
    order = make_order()

    assert accept_job(order["_id"], runner) is True

    stored = database.get_document_by_id("orders", order["_id"])
    assert stored["runner_id"] == runner["_id"]
    assert stored["status"] == "pickup_scheduled"
    timeline = database.get_documents("order_timeline", {"order_id": order["_id"]})
    assert [t["status"] for t in timeline] == ["pickup_scheduled"]


def test_second_runner_accept_changes_nothing(make_user, make_order):
    first, second = make_user("runner"), make_user("runner")
    order = make_order()

    assert accept_job(order["_id"], first) is True
    assert accept_job(order["_id"], second) is False

    stored = database.get_document_by_id("orders", order["_id"])
    assert stored["runner_id"] == first["_id"]


@pytest.mark.parametrize("status", [s for s in ORDER_FLOW if s != "booked"] + ["cancelled"])
def test_runner_accept_requires_booked(make_user, make_order, status):
    runner = make_user("runner")
    order = make_order(status=status)

    assert accept_job(order["_id"], runner) is False
    stored = database.get_document_by_id("orders", order["_id"])
    assert stored["runner_id"] is None
    assert stored["status"] == status


def test_runner_accept_requires_unassigned(make_user, make_order):
    runner = make_user("runner")
    order = make_order(runner_id="someone-else")
    assert accept_job(order["_id"], runner) is False
    assert status_of(order["_id"]) == "booked"


def test_tailor_accept_requires_collected(make_user, make_order):
    tailor = make_user("tailor")
    booked = make_order()
    collected = make_order(status="collected", runner_id="r1")

    assert accept_job(booked["_id"], tailor) is False
    assert accept_job(collected["_id"], tailor) is True

    stored = database.get_document_by_id("orders", collected["_id"])
    assert stored["tailor_id"] == tailor["_id"]
    assert stored["status"] == "in_progress"


def test_customer_cannot_accept(make_user, make_order):
    with pytest.raises(TransitionError):
        accept_job(make_order()["_id"], make_user())


def test_unknown_order_id(make_user):
    assert accept_job("not-an-id", make_user("runner")) is False
    assert accept_job("0123456789abcdef01234567", make_user("runner")) is False


def test_assigned_runner_marks_collected(make_user, make_order):
    runner = make_user("runner")
    order = make_order(status="pickup_scheduled", runner_id=runner["_id"])

    assert advance_order(order["_id"], "collected", runner) is True
    stored = database.get_document_by_id("orders", order["_id"])
    assert stored["status"] == "collected"
    assert stored["collected_at"] is not None


def test_other_runner_cannot_advance(make_user, make_order):
    runner, other = make_user("runner"), make_user("runner")
    order = make_order(status="pickup_scheduled", runner_id=runner["_id"])

    assert advance_order(order["_id"], "collected", other) is False
    assert status_of(order["_id"]) == "pickup_scheduled"


def test_advance_requires_predecessor(make_user, make_order):
    tailor = make_user("tailor")
    order = make_order(status="collected", tailor_id=tailor["_id"])
    assert advance_order(order["_id"], "ready", tailor) is False
    assert status_of(order["_id"]) == "collected"


def test_role_cannot_take_foreign_step(make_user, make_order):
    runner = make_user("runner")
    order = make_order(status="in_progress", runner_id=runner["_id"])
    with pytest.raises(TransitionError):
        advance_order(order["_id"], "ready", runner)


def test_assignment_steps_only_via_accept(make_user, make_order):
    admin = make_user("admin")
    with pytest.raises(TransitionError):
        advance_order(make_order()["_id"], "pickup_scheduled", admin)
    with pytest.raises(TransitionError):
        advance_order(make_order()["_id"], "booked", admin)


def test_full_happy_path(make_user, make_order):
    runner, tailor, admin = make_user("runner"), make_user("tailor"), make_user("admin")
    order_id = make_order()["_id"]

    assert accept_job(order_id, runner)
    assert advance_order(order_id, "collected", runner)
    assert accept_job(order_id, tailor)
    assert advance_order(order_id, "ready", tailor)
    assert advance_order(order_id, "out_for_delivery", runner)
    assert advance_order(order_id, "delivered", runner)
    assert advance_order(order_id, "completed", admin)

    stored = database.get_document_by_id("orders", order_id)
    assert stored["status"] == "completed"
    assert stored["completed_at"] is not None
    timeline = database.get_documents("order_timeline", {"order_id": order_id}, sort=[("created_at", 1)])
    assert len(timeline) == 7


def test_cancel_from_non_terminal_only(make_user, make_order):
    admin = make_user("admin")
    live = make_order(status="in_progress")
    done = make_order(status="completed")
    gone = make_order(status="cancelled")

    assert cancel_order(live["_id"], admin) is True
    assert status_of(live["_id"]) == "cancelled"
    assert cancel_order(done["_id"], admin) is False
    assert cancel_order(gone["_id"], admin) is False
    assert status_of(done["_id"]) == "completed"
