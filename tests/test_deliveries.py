"""
Tests for delivery requests and the booking webhook hand-off.
"""
import json
from datetime import date

import httpx
import pytest

from sitework.errors import InvalidTransition, UpstreamError, ValidationError
from sitework.services import deliveries
from sitework.services.booking_client import BookingWebhookClient


TODAY = date(2026, 10, 19)
TOMORROW = date(2026, 10, 20)


def _request(**overrides):
    data = {
        "supplier": "Travis Perkins",
        "delivery_date": TOMORROW,
        "delivery_time": "08:30",
        "items": [{"item": "Plasterboard", "quantity": 40}, {"item": "Studs", "quantity": 120, "description": "3m"}],
        "delivery_method": {"pallets": 3},
        "vehicle_details": {"vehicle_type": "Rigid", "over_35t": False},
    }
    data.update(overrides)
    return data


def _client_factory(handler):
    return lambda: BookingWebhookClient(url="http://hooks.test/book", transport=httpx.MockTransport(handler))


class TestCreateBooking:
    def test_defaults_and_request_id(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.create_booking(db, user, _request(), TODAY)
        assert booking.request_id.startswith("REQ-")
        assert booking.project_id == project.id
        assert booking.status == "pending"
        assert booking.delivery_method["unload_method"] == "Manual"
        assert booking.items[1] == {"item": "Studs", "quantity": 120, "description": "3m"}

    def test_vehicle_and_method_details_are_sanitised(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.create_booking(db, user, _request(
            delivery_method={"pallets": 2, "unload_method": "<script>alert(1)</script>"},
            vehicle_details={"vehicle_type": "Artic", "registration": "AB12 CDE<script>alert(1)</script>", "notes": ["ok", "SELECT 1"]},
        ), TODAY)
        assert booking.delivery_method == {"pallets": 2, "unload_method": "Manual"}
        assert booking.vehicle_details == {
            "vehicle_type": "Artic", "registration": "AB12 CDE", "notes": ["ok", "1"], "over_35t": False,
        }

    def test_needs_a_project(self, db, make_user):
        user = make_user("supervisor")
        with pytest.raises(ValidationError):
            deliveries.create_booking(db, user, _request(), TODAY)

    @pytest.mark.parametrize("overrides", [
        {"delivery_date": date(2026, 10, 18)},
        {"delivery_time": "8:30"},
        {"delivery_time": "24:00"},
        {"items": []},
        {"items": [{"item": "Sand", "quantity": 0}]},
        {"supplier": "  "},
    ])
    def test_rejects_bad_requests(self, db, make_user, project, overrides):
        user = make_user("supervisor", current_project_id=project.id)
        with pytest.raises(ValidationError):
            deliveries.create_booking(db, user, _request(**overrides), TODAY)

    def test_request_ids_are_unique(self, db, make_user, project, monkeypatch):
        monkeypatch.setattr(deliveries, "_epoch_ms", lambda: 1760000000000)
        user = make_user("supervisor", current_project_id=project.id)
        first = deliveries.create_booking(db, user, _request(), TODAY)
        second = deliveries.create_booking(db, user, _request(), TODAY)
        assert first.request_id == "REQ-1760000000000"
        assert second.request_id == "REQ-1760000000001"


class TestInitiateBooking:
    def test_demo_reference_without_webhook(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.create_booking(db, user, _request(), TODAY)
        booking = deliveries.initiate_booking(db, user, booking)
        assert booking.status == "booked"
        assert booking.booking_reference.startswith("DEMO-")
        assert booking.booking_time is not None

    def test_webhook_reference_is_stored(self, db, make_user, project):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"reference": "TP-88412"})

        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.create_booking(db, user, _request(), TODAY)
        booking = deliveries.initiate_booking(db, user, booking, client_factory=_client_factory(handler))
        assert booking.booking_reference == "TP-88412"
        assert seen["requestId"] == booking.request_id
        assert seen["deliveryData"]["supplier"] == "Travis Perkins"
        assert seen["deliveryData"]["deliveryDate"] == "2026-10-20"

    def test_webhook_failure_can_be_retried(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.create_booking(db, user, _request(), TODAY)
        with pytest.raises(UpstreamError):
            deliveries.initiate_booking(db, user, booking, client_factory=_client_factory(lambda r: httpx.Response(503)))
        assert booking.status == "failed"
        assert booking.failure_reason

        booking = deliveries.initiate_booking(
            db, user, booking, client_factory=_client_factory(lambda r: httpx.Response(200, json={}))
        )
        assert booking.status == "booked"
        assert booking.booking_reference.startswith("BOOK-")

    def test_booked_cannot_be_rejected(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booking = deliveries.initiate_booking(db, user, deliveries.create_booking(db, user, _request(), TODAY))
        with pytest.raises(InvalidTransition):
            deliveries.reject_booking(db, user, booking, "Wrong slot")


class TestReports:
    def test_tomorrow_report_lists_booked_only(self, db, make_user, project):
        user = make_user("supervisor", current_project_id=project.id)
        booked = deliveries.initiate_booking(db, user, deliveries.create_booking(db, user, _request(), TODAY))
        deliveries.create_booking(db, user, _request(supplier="Jewson"), TODAY)

        day, bookings, content = deliveries.tomorrow_report(db, TODAY)
        assert day == TOMORROW
        assert [b.id for b in bookings] == [booked.id]
        lines = content.splitlines()
        assert lines[0] == "Booking Ref,Supplier,Time,Items Count,Items Detail"
        assert "Plasterboard (40); Studs (120)" in lines[1]
