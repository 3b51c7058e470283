from datetime import date
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.deliveries import BookingCreate, BookingReject, BookingResponse
from ..services import deliveries
from ..services.permissions import has_permission
from ..services.time_rules import local_today
from .downloads import csv_response


router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.post("", response_model=BookingResponse, status_code=201)
def create_booking(req: BookingCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return deliveries.create_booking(db, user, req.model_dump(), local_today())


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    booked_only: bool = False,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Requests raised by the caller; delivery managers see every request."""
    submitted_by = None if has_permission(user, "deliveries:manage") else user.id
    return deliveries.list_bookings(
        db, project_id=project_id, status=status, booked_only=booked_only,
        date_from=date_from, date_to=date_to, submitted_by=submitted_by,
    )


@router.get("/export")
def export_bookings(
    project_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("deliveries:manage")),
):
    bookings = deliveries.list_bookings(db, project_id=project_id, booked_only=True, date_from=date_from, date_to=date_to)
    return csv_response(deliveries.bookings_csv(bookings), f"delivery-bookings-{local_today().isoformat()}.csv")


@router.get("/tomorrow")
def tomorrow_report(
    project_id: Optional[uuid.UUID] = None,
    format: str = "json",
    db: Session = Depends(get_db),
    _=Depends(require_permissions("deliveries:manage")),
):
    day, bookings, content = deliveries.tomorrow_report(db, local_today(), project_id)
    if format == "csv":
        return csv_response(content, f"deliveries-{day.isoformat()}.csv")
    return {
        "date": day.isoformat(),
        "count": len(bookings),
        "deliveries": [
            {
                "booking_reference": b.booking_reference,
                "supplier": b.supplier,
                "delivery_time": b.delivery_time,
                "items_count": len(b.items or []),
                "items_detail": deliveries.items_detail(b.items),
            }
            for b in bookings
        ],
    }


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    booking = deliveries.get_booking(db, booking_id)
    if booking.submitted_by != user.id and not has_permission(user, "deliveries:manage"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return booking


@router.post("/{booking_id}/initiate-booking", response_model=BookingResponse)
def initiate_booking(
    booking_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("deliveries:manage")),
):
    """Send a pending request to the booking service."""
    return deliveries.initiate_booking(db, actor, deliveries.get_booking(db, booking_id))


@router.post("/{booking_id}/reject", response_model=BookingResponse)
def reject_booking(
    booking_id: uuid.UUID,
    req: BookingReject,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("deliveries:manage")),
):
    return deliveries.reject_booking(db, actor, deliveries.get_booking(db, booking_id), req.reason)
