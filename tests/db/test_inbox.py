"""Tests for in-app notification inbox CRUD operations."""

from __future__ import annotations

from eatlocal.db.crud.notifications import create_notification, list_for_user


async def test_create_notification_defaults(session):
    note = await create_notification(session, "u1", "Order update", "Your driver is close")
    assert note.type == "general"
    assert note.is_read is False
    assert note.action_url is None


async def test_create_notification_with_metadata(session):
    note = await create_notification(
        session,
        "u1",
        "Order update",
        "Out for delivery",
        type="order",
        action_url="/orders/42",
        payload={"order_id": 42},
    )
    assert note.type == "order"
    assert note.action_url == "/orders/42"
    assert note.payload == {"order_id": 42}


async def test_list_for_user(session):
    await create_notification(session, "u1", "a", "first")
    await create_notification(session, "u1", "b", "second")
    await create_notification(session, "u2", "c", "other user")

    notes = await list_for_user(session, "u1")
    assert {n.message for n in notes} == {"first", "second"}
    assert await list_for_user(session, "u1", limit=1) != []
    assert len(await list_for_user(session, "u1", unread_only=True)) == 2
