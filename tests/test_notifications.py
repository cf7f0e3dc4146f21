#!/usr/bin/env python3
"""
Tests for the notification center: dedup, capping, read state and remote merge.
"""

import pytest
import sys
import os
from datetime import timedelta
from unittest.mock import AsyncMock

# Add project root to Python path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meraki.schemas.notification import (
    ManualNotificationCreate,
    Notification,
    NotificationType,
    Priority,
)
from meraki.services.local_store import NOTIFICATIONS_SLOT, SOUND_FLAG
from meraki.services.notifications import WELCOME_ID, NotificationCenter


def make_notification(clock, n: int, **overrides) -> Notification:
    fields = dict(
        id=f"n-{n}",
        type=NotificationType.SYSTEM,
        title=f"Aviso {n}",
        message="Mensaje",
        created_at=clock() + timedelta(minutes=n),
        priority=Priority.LOW,
    )
    fields.update(overrides)
    return Notification(**fields)


@pytest.fixture
async def center(store, clock):
    center = NotificationCenter(store, clock=clock)
    await center.load()
    await center.remove(WELCOME_ID)
    return center


@pytest.mark.unit
class TestLoad:

    async def test_first_load_shows_welcome(self, store, clock):
        center = NotificationCenter(store, clock=clock)
        await center.load()

        assert [n.id for n in center.list()] == [WELCOME_ID]
        assert center.list()[0].type == NotificationType.SYSTEM
        assert len(await store.read(NOTIFICATIONS_SLOT)) == 1

    async def test_log_survives_restart(self, center, store, clock):
        await center.ingest([make_notification(clock, 1)])
        await center.mark_read("n-1")

        restarted = NotificationCenter(store, clock=clock)
        await restarted.load()
        assert [n.id for n in restarted.list()] == ["n-1"]
        assert restarted.unread_count == 0

    async def test_legacy_normal_priority_reads_as_medium(self, store, clock):
        await store.write(NOTIFICATIONS_SLOT, [{
            "id": "old", "type": "reminder", "title": "t", "message": "m",
            "createdAt": "2026-03-01T10:00:00Z", "read": False, "priority": "normal",
        }])
        center = NotificationCenter(store, clock=clock)
        await center.load()
        assert center.get("old").priority == Priority.MEDIUM


@pytest.mark.unit
class TestIngest:

    async def test_duplicate_ids_are_ingested_once(self, center, clock):
        first = make_notification(clock, 1)
        await center.ingest([first])
        added = await center.ingest([first.model_copy(update={"title": "otra vez"})])

        assert added == []
        assert len(center) == 1
        assert center.get("n-1").title == "Aviso 1"

    async def test_duplicates_within_one_batch(self, center, clock):
        note = make_notification(clock, 1)
        await center.ingest([note, note])
        assert len(center) == 1

    async def test_log_is_capped_at_fifty_keeping_newest(self, center, clock):
        await center.ingest([make_notification(clock, n) for n in range(60)])

        assert len(center) == 50
        ids = {n.id for n in center.list()}
        assert "n-0" not in ids and "n-9" not in ids
        assert "n-10" in ids and "n-59" in ids

    async def test_old_candidate_beyond_the_cap_is_not_kept(self, center, clock):
        await center.ingest([make_notification(clock, n) for n in range(1, 51)])
        added = await center.ingest([make_notification(clock, -100, id="ancient")])

        assert added == []
        assert center.get("ancient") is None
        assert len(center) == 50

    async def test_list_is_newest_first(self, center, clock):
        await center.ingest([make_notification(clock, 2), make_notification(clock, 5), make_notification(clock, 1)])
        assert [n.id for n in center.list()] == ["n-5", "n-2", "n-1"]

    async def test_high_priority_notifications_alert_listeners(self, center, clock):
        listener = AsyncMock()
        center.subscribe_alerts(listener)
        urgent = make_notification(clock, 1, priority=Priority.URGENT)
        await center.ingest([urgent, make_notification(clock, 2)])

        listener.assert_awaited_once()
        assert listener.await_args.args[0].id == "n-1"

    async def test_failing_listener_does_not_block_ingest(self, center, clock):
        center.subscribe_alerts(AsyncMock(side_effect=RuntimeError("speaker unplugged")))
        added = await center.ingest([make_notification(clock, 1, priority=Priority.HIGH)])
        assert len(added) == 1


@pytest.mark.unit
class TestReadState:

    async def test_unread_count_is_derived(self, center, clock):
        await center.ingest([make_notification(clock, n) for n in range(3)])
        assert center.unread_count == 3

        assert await center.mark_read("n-1")
        assert center.unread_count == 2
        assert [n.id for n in center.list(unread_only=True)] == ["n-2", "n-0"]

    async def test_mark_all_read(self, center, clock):
        await center.ingest([make_notification(clock, n) for n in range(3)])
        assert await center.mark_all_read() == 3
        assert center.unread_count == 0
        assert await center.mark_all_read() == 0

    async def test_mark_read_unknown_id(self, center):
        assert not await center.mark_read("nope")

    async def test_remove(self, center, clock):
        await center.ingest([make_notification(clock, 1)])
        assert await center.remove("n-1")
        assert not await center.remove("n-1")
        assert len(center) == 0

    async def test_list_returns_copies(self, center, clock):
        await center.ingest([make_notification(clock, 1)])
        center.list()[0].read = True
        assert center.unread_count == 1

    async def test_remove_for_appointment(self, center, clock):
        await center.ingest([
            make_notification(clock, 1, id="reminder-a", type=NotificationType.REMINDER, appointment_id="a"),
            make_notification(clock, 2, id="new_appointment-a", type=NotificationType.NEW_APPOINTMENT,
                              appointment_id="a"),
            make_notification(clock, 3, id="reminder-b", type=NotificationType.REMINDER, appointment_id="b"),
        ])
        removed = await center.remove_for_appointment("a", {NotificationType.REMINDER})

        assert removed == 1
        assert {n.id for n in center.list()} == {"new_appointment-a", "reminder-b"}


@pytest.mark.unit
class TestManualAndPreferences:

    async def test_manual_notification(self, center):
        note = await center.create_manual(ManualNotificationCreate(
            title="Cierre temprano", message="Hoy cerramos a las 4", priority="normal"))

        assert note.type == NotificationType.MANUAL
        assert note.priority == Priority.MEDIUM
        assert center.get(note.id) is not None

    async def test_sound_preference_is_persisted(self, center, store, clock):
        assert center.sound_enabled
        await center.set_sound_enabled(False)
        assert await store.read(SOUND_FLAG) is False

        restarted = NotificationCenter(store, clock=clock)
        await restarted.load()
        assert restarted.sound_enabled is False


@pytest.mark.integration
class TestRemote:

    async def test_refresh_ingests_new_remote_notifications(self, store, remote, remote_server, clock):
        remote_server.add_notification(id="srv-1", priority="high")
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()

        assert await center.refresh_remote() == 1
        assert center.get("srv-1").priority == Priority.HIGH
        assert await center.refresh_remote() == 0

    async def test_remote_read_flags_are_adopted(self, store, remote, remote_server, clock):
        remote_server.add_notification(id="srv-1")
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()
        await center.refresh_remote()

        remote_server.notifications["srv-1"]["read"] = True
        await center.refresh_remote()
        assert center.get("srv-1").read

    async def test_mark_read_is_forwarded_for_remote_notifications(self, store, remote, remote_server, clock):
        remote_server.add_notification(id="srv-1")
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()
        await center.refresh_remote()

        await center.mark_read("srv-1")
        await center.mark_read(WELCOME_ID)

        puts = remote_server.calls("PUT", "/notifications")
        assert [p["path"] for p in puts] == ["/notifications/srv-1/read"]
        assert remote_server.notifications["srv-1"]["read"]

    async def test_remote_outage_keeps_local_log(self, store, remote, remote_server, clock):
        remote_server.available = False
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()

        assert await center.refresh_remote() == 0
        assert [n.id for n in center.list()] == [WELCOME_ID]

    async def test_mark_read_survives_remote_failure(self, store, remote, remote_server, clock):
        remote_server.add_notification(id="srv-1")
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()
        await center.refresh_remote()

        remote_server.available = False
        assert await center.mark_read("srv-1")
        assert center.get("srv-1").read

    async def test_mark_all_read_is_forwarded_for_remote_notifications(self, store, remote, remote_server, clock):
        remote_server.add_notification(id="srv-1")
        remote_server.add_notification(id="srv-2", read=True)
        center = NotificationCenter(store, remote, clock=clock)
        await center.load()
        await center.refresh_remote()

        assert await center.mark_all_read() == 2  # srv-1 and the welcome note

        puts = remote_server.calls("PUT", "/notifications")
        assert [p["path"] for p in puts] == ["/notifications/srv-1/read"]
        assert remote_server.notifications["srv-1"]["read"]
