"""
Delivery booking requests and the booking hand-off to the logistics webhook.
"""
import csv
import io
import re
import time
import uuid
from datetime import date, timedelta
from typing import Callable, List, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidTransition, NotFoundError, UpstreamError, ValidationError
from ..models.models import DeliveryBooking, Project, User, utcnow
from .audit import record_action
from .booking_client import BookingWebhookClient
from .validation import sanitize_input, sanitize_payload

log = structlog.get_logger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

BOOKINGS_CSV_HEADERS = [
    "Request ID", "Booking Reference", "Supplier", "Delivery Date",
    "Delivery Time", "Items Count", "Status", "Booking Time",
]
TOMORROW_CSV_HEADERS = ["Booking Ref", "Supplier", "Time", "Items Count", "Items Detail"]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _unique_request_id(db: Session) -> str:
    stamp = _epoch_ms()
    while db.query(DeliveryBooking.id).filter(DeliveryBooking.request_id == f"REQ-{stamp}").first():
        stamp += 1
    return f"REQ-{stamp}"


def _clean_items(items: List[dict]) -> List[dict]:
    if not items:
        raise ValidationError("At least one item is required")
    cleaned = []
    for raw in items:
        name = sanitize_input(raw.get("item"))
        if not name:
            raise ValidationError("Every item needs a name")
        quantity = raw.get("quantity") or 0
        if quantity < 1:
            raise ValidationError(f"Quantity for '{name}' must be at least 1")
        cleaned.append({
            "item": name,
            "quantity": int(quantity),
            "description": sanitize_input(raw.get("description")) or None,
        })
    return cleaned


def create_booking(db: Session, user: User, data: dict, today: date) -> DeliveryBooking:
    """
    Record a delivery request against the submitter's current project.

    Args:
        db: Database session
        user: Submitting user
        data: supplier, delivery_date, delivery_time, items, delivery_method,
            vehicle_details, notes and optionally project_id
        today: Site-local date used to reject past delivery dates
    """
    project_id = data.get("project_id") or user.current_project_id
    if not project_id:
        raise ValidationError("Select a current project before booking deliveries")
    if not db.get(Project, project_id):
        raise NotFoundError("Project", project_id)

    supplier = sanitize_input(data.get("supplier"))
    if not supplier:
        raise ValidationError("Supplier is required")
    delivery_date: date = data["delivery_date"]
    if delivery_date < today:
        raise ValidationError("Delivery date cannot be in the past")
    delivery_time = (data.get("delivery_time") or "").strip()
    if not TIME_RE.match(delivery_time):
        raise ValidationError("Delivery time must be HH:MM")

    method = sanitize_payload(dict(data.get("delivery_method") or {}))
    method.setdefault("pallets", 0)
    method["unload_method"] = method.get("unload_method") or "Manual"
    vehicle = sanitize_payload(dict(data.get("vehicle_details") or {}))
    vehicle.setdefault("over_35t", False)

    booking = DeliveryBooking(
        request_id=_unique_request_id(db),
        project_id=project_id,
        submitted_by=user.id,
        supplier=supplier,
        delivery_date=delivery_date,
        delivery_time=delivery_time,
        items=_clean_items(data.get("items") or []),
        delivery_method=method,
        vehicle_details=vehicle,
        notes=sanitize_input(data.get("notes")) or None,
        status="pending",
    )
    db.add(booking)
    db.flush()
    record_action(db, user, "delivery_booking", booking.id, "CREATE", context={"request_id": booking.request_id})
    db.commit()
    db.refresh(booking)
    log.info("delivery_requested", request_id=booking.request_id, supplier=supplier)
    return booking


def get_booking(db: Session, booking_id: uuid.UUID) -> DeliveryBooking:
    booking = db.get(DeliveryBooking, booking_id)
    if not booking:
        raise NotFoundError("Delivery booking", booking_id)
    return booking


def booking_payload(booking: DeliveryBooking) -> dict:
    """Form data as sent to the booking webhook."""
    return {
        "projectId": str(booking.project_id),
        "project": booking.project.name if booking.project else None,
        "supplier": booking.supplier,
        "deliveryDate": booking.delivery_date.isoformat(),
        "deliveryTime": booking.delivery_time,
        "items": booking.items,
        "deliveryMethod": booking.delivery_method,
        "vehicleDetails": booking.vehicle_details,
        "notes": booking.notes,
    }


def initiate_booking(
    db: Session,
    actor: User,
    booking: DeliveryBooking,
    client_factory: Optional[Callable[[], BookingWebhookClient]] = None,
) -> DeliveryBooking:
    """
    Hand a pending booking to the webhook and store the returned reference.

    Without a configured webhook the booking is simulated with a DEMO-
    reference. A webhook failure leaves the booking "failed" so it can be retried.
    """
    if booking.status not in ("pending", "failed"):
        raise InvalidTransition("delivery booking", booking.status, "initiated")
    booking.status = "initiated"
    booking.failure_reason = None
    db.commit()

    if client_factory is None and not settings.booking_webhook_url:
        reference = f"DEMO-{_epoch_ms()}"
    else:
        client = client_factory() if client_factory else BookingWebhookClient()
        try:
            result = client.initiate_delivery(booking.request_id, booking_payload(booking))
        except httpx.HTTPError as e:
            booking.status = "failed"
            booking.failure_reason = str(e)
            record_action(db, actor, "delivery_booking", booking.id, "BOOKING_FAILED", context={"error": str(e)})
            db.commit()
            log.warning("delivery_booking_failed", request_id=booking.request_id, error=str(e))
            raise UpstreamError("Booking service unavailable, please retry")
        reference = result.get("reference") or f"BOOK-{_epoch_ms()}"

    booking.status = "booked"
    booking.booking_reference = reference
    booking.booking_time = utcnow()
    record_action(db, actor, "delivery_booking", booking.id, "BOOK", context={"reference": reference})
    db.commit()
    db.refresh(booking)
    log.info("delivery_booked", request_id=booking.request_id, reference=reference)
    return booking


def reject_booking(db: Session, actor: User, booking: DeliveryBooking, reason: Optional[str] = None) -> DeliveryBooking:
    if booking.status not in ("pending", "failed"):
        raise InvalidTransition("delivery booking", booking.status, "rejected")
    booking.status = "rejected"
    booking.failure_reason = sanitize_input(reason) or None
    record_action(db, actor, "delivery_booking", booking.id, "REJECT", context={"reason": reason})
    db.commit()
    db.refresh(booking)
    return booking


def list_bookings(
    db: Session,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    booked_only: bool = False,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    submitted_by: Optional[uuid.UUID] = None,
) -> List[DeliveryBooking]:
    query = db.query(DeliveryBooking)
    if project_id:
        query = query.filter(DeliveryBooking.project_id == project_id)
    if status:
        query = query.filter(DeliveryBooking.status == status)
    if booked_only:
        query = query.filter(DeliveryBooking.status != "pending")
    if date_from:
        query = query.filter(DeliveryBooking.delivery_date >= date_from)
    if date_to:
        query = query.filter(DeliveryBooking.delivery_date <= date_to)
    if submitted_by:
        query = query.filter(DeliveryBooking.submitted_by == submitted_by)
    return query.order_by(DeliveryBooking.delivery_date, DeliveryBooking.delivery_time).all()


def bookings_csv(bookings: List[DeliveryBooking]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(BOOKINGS_CSV_HEADERS)
    for b in bookings:
        writer.writerow([
            b.request_id,
            b.booking_reference or "",
            b.supplier,
            b.delivery_date.isoformat(),
            b.delivery_time,
            len(b.items or []),
            b.status,
            b.booking_time.isoformat() if b.booking_time else "",
        ])
    return buf.getvalue()


def items_detail(items: List[dict]) -> str:
    return "; ".join(f"{i['item']} ({i['quantity']})" for i in items or [])


def tomorrow_report(db: Session, today: date, project_id: Optional[uuid.UUID] = None):
    """
    Booked deliveries arriving tomorrow.

    Returns:
        (date, bookings, CSV content)
    """
    tomorrow = today + timedelta(days=1)
    bookings = list_bookings(db, project_id=project_id, status="booked", date_from=tomorrow, date_to=tomorrow)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(TOMORROW_CSV_HEADERS)
    for b in bookings:
        writer.writerow([b.booking_reference or "", b.supplier, b.delivery_time, len(b.items or []), items_detail(b.items)])
    return tomorrow, bookings, buf.getvalue()
