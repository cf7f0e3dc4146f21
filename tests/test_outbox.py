#!/usr/bin/env python3
"""
Tests for the durable sync outbox: ordering, backoff, dropping and id remapping.
"""

import pytest
import sys
import os
from datetime import timedelta
from unittest.mock import AsyncMock

# Add project root to Python path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meraki.services.local_store import OUTBOX_SLOT
from meraki.services.outbox import Outbox, OutboxOp

CREATE_BODY = {
    "clientName": "Marta Ruiz",
    "clientEmail": "marta@example.com",
    "clientPhone": "55507777",
    "service": "Pedicura Spa",
    "date": "2026-03-14",
    "time": "16:00",
    "notes": None,
    "totalPrice": 25,
}


@pytest.fixture
def outbox(store, remote, clock):
    return Outbox(store, remote, base_delay=2.0, max_delay=300.0, max_attempts=4, clock=clock)


@pytest.mark.unit
class TestOrdering:

    async def test_intents_are_delivered_in_enqueue_order(self, outbox, remote_server):
        a = remote_server.add_appointment(id="a")
        b = remote_server.add_appointment(id="b")

        await outbox.enqueue(OutboxOp.UPDATE, a["id"], {"status": "confirmed"})
        await outbox.enqueue(OutboxOp.DELETE, b["id"])
        await outbox.enqueue(OutboxOp.UPDATE, a["id"], {"status": "completed"})
        report = await outbox.drain()

        assert len(report.delivered) == 3
        assert [(r["method"], r["path"]) for r in remote_server.requests] == [
            ("PUT", "/appointments/a"),
            ("DELETE", "/appointments/b"),
            ("PUT", "/appointments/a"),
        ]
        assert remote_server.appointments["a"]["status"] == "completed"
        assert outbox.pending == []

    async def test_failed_head_blocks_later_intents(self, outbox, remote_server):
        remote_server.add_appointment(id="a")
        remote_server.available = False

        await outbox.enqueue(OutboxOp.UPDATE, "a", {"status": "confirmed"})
        await outbox.enqueue(OutboxOp.DELETE, "a")
        report = await outbox.drain()

        assert report.delivered == []
        assert report.deferred.op == OutboxOp.UPDATE
        # Only the head was attempted
        assert len(remote_server.requests) == 1
        assert [e.op for e in outbox.pending] == [OutboxOp.UPDATE, OutboxOp.DELETE]

    async def test_remote_receives_bearer_key(self, outbox, remote_server):
        remote_server.add_appointment(id="a")
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"notes": "x"})
        await outbox.drain()
        assert remote_server.requests[0]["auth"] == "Bearer test-remote-key-123"


@pytest.mark.unit
class TestRetry:

    async def test_backoff_grows_exponentially_and_is_capped(self, outbox):
        assert outbox._backoff(1) == timedelta(seconds=2)
        assert outbox._backoff(2) == timedelta(seconds=4)
        assert outbox._backoff(3) == timedelta(seconds=8)
        assert outbox._backoff(20) == timedelta(seconds=300)

    async def test_transient_failure_is_retried_after_backoff(self, outbox, remote_server, clock):
        remote_server.add_appointment(id="a")
        remote_server.available = False
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"status": "confirmed"})

        report = await outbox.drain()
        entry = report.deferred
        assert entry.attempts == 1
        assert entry.next_attempt_at == clock() + timedelta(seconds=2)
        assert entry.last_error

        # Not due yet: nothing is sent
        remote_server.available = True
        await outbox.drain()
        assert len(remote_server.requests) == 1

        clock.advance(seconds=2)
        report = await outbox.drain()
        assert len(report.delivered) == 1
        assert remote_server.appointments["a"]["status"] == "confirmed"

    async def test_server_errors_are_retryable(self, outbox, remote_server):
        remote_server.add_appointment(id="a")
        remote_server.fail_status = 503
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"status": "confirmed"})

        report = await outbox.drain()
        assert report.dropped == []
        assert len(outbox.pending) == 1

    async def test_entry_is_dropped_after_max_attempts(self, outbox, remote_server, clock):
        remote_server.available = False
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"status": "confirmed"})

        for _ in range(3):
            await outbox.drain()
            clock.advance(seconds=400)
        report = await outbox.drain()

        assert len(report.dropped) == 1
        assert outbox.pending == []

    async def test_client_errors_are_dropped_immediately(self, outbox, remote_server):
        remote_server.fail_status = 400
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"status": "confirmed"})
        await outbox.enqueue(OutboxOp.UPDATE, "b", {"status": "confirmed"})

        report = await outbox.drain()
        assert len(report.dropped) == 2
        assert outbox.pending == []

    async def test_update_of_missing_remote_record_is_dropped(self, outbox, remote_server):
        await outbox.enqueue(OutboxOp.UPDATE, "ghost", {"status": "confirmed"})
        report = await outbox.drain()
        assert len(report.dropped) == 1

    async def test_delete_of_missing_remote_record_counts_as_delivered(self, outbox, remote_server):
        await outbox.enqueue(OutboxOp.DELETE, "ghost")
        report = await outbox.drain()
        assert len(report.delivered) == 1
        assert report.dropped == []


@pytest.mark.unit
class TestCreates:

    async def test_deleting_an_unsent_create_cancels_both(self, outbox, remote_server):
        remote_server.available = False
        await outbox.enqueue(OutboxOp.CREATE, "local-1", CREATE_BODY)
        await outbox.drain()

        assert await outbox.enqueue(OutboxOp.DELETE, "local-1") is None
        assert outbox.pending == []

    async def test_delivered_create_remaps_later_intents(self, outbox, remote_server):
        on_created = AsyncMock()
        outbox.on_created = on_created

        await outbox.enqueue(OutboxOp.CREATE, "local-1", CREATE_BODY)
        await outbox.enqueue(OutboxOp.UPDATE, "local-1", {"status": "confirmed"})
        await outbox.drain()

        server_id = outbox.id_map["local-1"]
        assert server_id != "local-1"
        assert remote_server.calls("PUT")[0]["path"] == f"/appointments/{server_id}"
        assert remote_server.appointments[server_id]["status"] == "confirmed"
        local_id, server = on_created.await_args.args
        assert local_id == "local-1"
        assert server.id == server_id

    async def test_intents_queued_after_delivery_target_the_server_id(self, outbox, remote_server):
        await outbox.enqueue(OutboxOp.CREATE, "local-1", CREATE_BODY)
        await outbox.drain()
        server_id = outbox.id_map["local-1"]

        entry = await outbox.enqueue(OutboxOp.DELETE, "local-1")
        assert entry.appointment_id == server_id

        await outbox.drain()
        assert remote_server.appointments == {}

    async def test_failing_callback_does_not_resend_create(self, outbox, remote_server):
        outbox.on_created = AsyncMock(side_effect=RuntimeError("local write failed"))
        await outbox.enqueue(OutboxOp.CREATE, "local-1", CREATE_BODY)

        report = await outbox.drain()
        assert len(report.delivered) == 1
        assert len(remote_server.calls("POST")) == 1
        assert outbox.pending == []


@pytest.mark.unit
class TestDurability:

    async def test_pending_intents_survive_restart(self, store, remote, remote_server, clock):
        remote_server.available = False
        first = Outbox(store, remote, clock=clock)
        await first.enqueue(OutboxOp.CREATE, "local-1", CREATE_BODY)
        await first.enqueue(OutboxOp.UPDATE, "local-1", {"status": "confirmed"})
        await first.drain()

        stored = await store.read(OUTBOX_SLOT)
        assert [e["op"] for e in stored] == ["create", "update"]
        assert stored[0]["appointmentId"] == "local-1"

        second = Outbox(store, remote, clock=clock)
        await second.load()
        assert [e.op for e in second.pending] == [OutboxOp.CREATE, OutboxOp.UPDATE]
        assert second.pending[0].attempts == 1

    async def test_flush_folds_concurrent_calls(self, outbox, remote_server):
        remote_server.add_appointment(id="a")
        await outbox.enqueue(OutboxOp.UPDATE, "a", {"notes": "1"})
        first = outbox.flush()
        second = outbox.flush()
        assert first is second
        await first
        assert outbox.pending == []
