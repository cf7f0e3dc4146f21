#!/usr/bin/env python3
"""
Tests for salon business rules: slot grid, catalog and the status lifecycle.
"""

import pytest
import sys
import os
from datetime import date, datetime, timezone

# Add project root to Python path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meraki.core.business import (
    BASE_SLOTS,
    LOCAL_TZ,
    SERVICE_CATALOG,
    appointment_start,
    available_slots,
    find_service,
    parse_slot,
)
from meraki.core.errors import InvalidTransitionError
from meraki.core.lifecycle import AppointmentStatus, can_transition, ensure_transition, is_terminal


@pytest.mark.unit
class TestSlots:

    def test_base_grid_is_half_hourly_from_nine_to_half_past_five(self):
        assert len(BASE_SLOTS) == 18
        assert BASE_SLOTS[0] == "09:00"
        assert BASE_SLOTS[-1] == "17:30"
        assert "12:30" in BASE_SLOTS

    def test_booked_slot_is_removed(self):
        day = date(2026, 3, 12)
        slots = available_slots(day, [(day, "10:00")])
        assert slots == [s for s in BASE_SLOTS if s != "10:00"]

    def test_bookings_on_other_days_do_not_count(self):
        slots = available_slots(date(2026, 3, 12), [(date(2026, 3, 13), "10:00")])
        assert slots == list(BASE_SLOTS)

    def test_duration_is_ignored(self):
        # A long colour service at 10:00 still leaves 10:30 open
        day = date(2026, 3, 12)
        slots = available_slots(day, [(day, "10:00")])
        assert "10:30" in slots

    def test_parse_slot_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_slot("25:99")
        with pytest.raises(ValueError):
            parse_slot("ten")

    def test_appointment_start_is_local_time(self):
        start = appointment_start(date(2026, 3, 10), "09:00")
        assert start.tzinfo == LOCAL_TZ
        # Guatemala is UTC-6 all year
        assert start.astimezone(timezone.utc) == datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestCatalog:

    def test_catalog_has_six_services(self):
        assert len(SERVICE_CATALOG) == 6
        assert {s["id"] for s in SERVICE_CATALOG} == {"1", "2", "3", "4", "5", "6"}

    def test_find_service_returns_copy(self):
        service = find_service("3")
        assert service["name"] == "Tinte Completo"
        service["price"] = 0
        assert find_service("3")["price"] == 45

    def test_find_unknown_service(self):
        assert find_service("99") is None


@pytest.mark.unit
class TestLifecycle:

    @pytest.mark.parametrize("current,requested", [
        ("pending", "confirmed"),
        ("pending", "cancelled"),
        ("confirmed", "completed"),
        ("confirmed", "cancelled"),
        ("pending", "pending"),
        ("completed", "completed"),
    ])
    def test_allowed(self, current, requested):
        assert can_transition(current, requested)
        ensure_transition(current, requested)

    @pytest.mark.parametrize("current,requested", [
        ("pending", "completed"),
        ("confirmed", "pending"),
        ("cancelled", "confirmed"),
        ("completed", "pending"),
        ("cancelled", "completed"),
    ])
    def test_rejected(self, current, requested):
        assert not can_transition(current, requested)
        with pytest.raises(InvalidTransitionError) as exc:
            ensure_transition(current, requested)
        assert exc.value.current == current
        assert exc.value.requested == requested

    def test_terminal_states(self):
        assert is_terminal(AppointmentStatus.CANCELLED)
        assert is_terminal(AppointmentStatus.COMPLETED)
        assert not is_terminal(AppointmentStatus.PENDING)
        assert not is_terminal(AppointmentStatus.CONFIRMED)
