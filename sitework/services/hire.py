"""
On-hire plant and equipment tracker with supplier request drafting.
"""
import uuid
from datetime import date
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..models.models import HireItem, HireRequest, Project, User, utcnow
from .audit import record_action
from .notifications import send_email
from .time_rules import format_uk_date, weeks_started

log = structlog.get_logger(__name__)

COLLECTION_WINDOW = "7:30am - 4:30pm, Monday to Friday"
REQUEST_TYPES = ("off-hire", "extension", "new-hire")


def effective_status(item: HireItem, today: date) -> str:
    """Stored status, except that live items past their off-hire date are overdue."""
    if item.status == "live" and item.expected_off_hire and item.expected_off_hire < today:
        return "overdue"
    return item.status


def accrued_cost(item: HireItem, today: date) -> float:
    """Cost so far, charging each started week in full."""
    end = item.off_hired_on or today
    return round(weeks_started(item.on_hire_date, end) * item.weekly_cost, 2)


def item_to_dict(item: HireItem, today: date) -> dict:
    return {
        "id": str(item.id),
        "project_id": str(item.project_id),
        "item_name": item.item_name,
        "supplier": item.supplier,
        "supplier_email": item.supplier_email,
        "order_ref": item.order_ref,
        "on_hire_date": item.on_hire_date.isoformat(),
        "expected_off_hire": item.expected_off_hire.isoformat() if item.expected_off_hire else None,
        "status": effective_status(item, today),
        "weekly_cost": item.weekly_cost,
        "accrued_cost": accrued_cost(item, today),
        "notes": item.notes,
        "who_added": item.added_by_user.full_name if item.added_by_user else None,
        "off_hired_on": item.off_hired_on.isoformat() if item.off_hired_on else None,
        "request_history": [request_to_dict(r) for r in item.requests],
    }


def request_to_dict(req: HireRequest) -> dict:
    return {
        "id": str(req.id),
        "type": req.request_type,
        "request_date": req.created_at.isoformat() if req.created_at else None,
        "requested_by": str(req.requested_by) if req.requested_by else None,
        "details": req.details,
        "generated": req.generated,
        "new_end_date": req.new_end_date.isoformat() if req.new_end_date else None,
        "status": req.status,
        "email_sent_at": req.email_sent_at.isoformat() if req.email_sent_at else None,
    }


# =====================
# Items
# =====================

def _check_dates(on_hire: date, expected_off: Optional[date]) -> None:
    if expected_off and expected_off < on_hire:
        raise ValidationError("Expected off-hire date cannot be before the on-hire date")


def create_item(db: Session, user: User, data: dict) -> HireItem:
    project_id = data.get("project_id") or user.current_project_id
    if not project_id or not db.get(Project, project_id):
        raise ValidationError("A valid project is required")
    if data.get("weekly_cost", 0) < 0:
        raise ValidationError("Weekly cost cannot be negative")
    _check_dates(data["on_hire_date"], data.get("expected_off_hire"))
    item = HireItem(
        project_id=project_id,
        item_name=data["item_name"].strip(),
        supplier=data["supplier"].strip(),
        supplier_email=data.get("supplier_email"),
        order_ref=data.get("order_ref"),
        on_hire_date=data["on_hire_date"],
        expected_off_hire=data.get("expected_off_hire"),
        weekly_cost=data.get("weekly_cost", 0.0),
        notes=data.get("notes"),
        added_by=user.id,
        status="live",
    )
    db.add(item)
    db.flush()
    db.add(HireRequest(hire_item_id=item.id, request_type="new-hire", requested_by=user.id, status="confirmed",
                       details=f"{item.item_name} on hire from {item.supplier}"))
    record_action(db, user, "hire_item", item.id, "CREATE", context={"supplier": item.supplier})
    db.commit()
    db.refresh(item)
    return item


def update_item(db: Session, user: User, item: HireItem, data: dict) -> HireItem:
    for key in ("item_name", "supplier", "supplier_email", "order_ref", "on_hire_date", "expected_off_hire", "weekly_cost", "notes"):
        if key in data and data[key] is not None:
            setattr(item, key, data[key])
    if item.weekly_cost < 0:
        raise ValidationError("Weekly cost cannot be negative")
    _check_dates(item.on_hire_date, item.expected_off_hire)
    record_action(db, user, "hire_item", item.id, "UPDATE", changes={k: str(v) for k, v in data.items() if v is not None})
    db.commit()
    db.refresh(item)
    return item


def get_item(db: Session, item_id: uuid.UUID) -> HireItem:
    item = db.get(HireItem, item_id)
    if not item:
        raise NotFoundError("Hire item", item_id)
    return item


def list_items(
    db: Session,
    today: date,
    project_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
) -> List[HireItem]:
    query = db.query(HireItem)
    if project_id:
        query = query.filter(HireItem.project_id == project_id)
    items = query.order_by(HireItem.expected_off_hire, HireItem.item_name).all()
    if search:
        needle = search.strip().lower()
        items = [i for i in items if needle in i.item_name.lower() or needle in i.supplier.lower()]
    if status:
        items = [i for i in items if effective_status(i, today) == status]
    return items


def hire_stats(items: List[HireItem], today: date) -> dict:
    on_hire = [i for i in items if i.status != "off-hired"]
    return {
        "total_items": len(on_hire),
        "total_weekly_cost": round(sum(i.weekly_cost for i in on_hire), 2),
        "overdue": sum(1 for i in on_hire if effective_status(i, today) == "overdue"),
        "pending_off_hire": sum(1 for i in on_hire if i.status == "off-hire-requested"),
    }


# =====================
# Supplier requests
# =====================

def draft_request(item: HireItem, request_type: str, new_end_date: Optional[date] = None) -> str:
    """Supplier email body for an off-hire or extension request."""
    project = item.project.name if item.project else "site"
    ref = item.order_ref or "N/A"
    signature = settings.site_team_signature
    if request_type == "off-hire":
        return (
            f"Hi {item.supplier},\n\n"
            f"Please arrange collection of {item.item_name} (Order Ref: {ref}) for {project}.\n\n"
            f"The item is ready for collection and can be picked up during normal working hours ({COLLECTION_WINDOW}).\n\n"
            "Please confirm collection date and time.\n\n"
            f"Best regards,\n{signature}"
        )
    if request_type == "extension":
        current = format_uk_date(item.expected_off_hire) if item.expected_off_hire else "[Not set]"
        requested = format_uk_date(new_end_date) if new_end_date else "[Please select date]"
        return (
            f"Hi {item.supplier},\n\n"
            f"We need to extend the hire period for {item.item_name} (Order Ref: {ref}) on {project}.\n\n"
            f"Current end date: {current}\n"
            f"Requested new end date: {requested}\n\n"
            "Please confirm the extension and updated costs.\n\n"
            f"Best regards,\n{signature}"
        )
    raise ValidationError(f"No template for '{request_type}' requests")


def create_request(
    db: Session,
    user: User,
    item: HireItem,
    request_type: str,
    details: Optional[str] = None,
    new_end_date: Optional[date] = None,
    send: bool = False,
) -> HireRequest:
    """
    Raise an off-hire or extension request against a hire item.

    When ``details`` is empty the supplier email is drafted from a template.
    With ``send`` the email goes to the supplier straight away.
    """
    if request_type not in ("off-hire", "extension"):
        raise ValidationError("Requests must be 'off-hire' or 'extension'")
    if item.status == "off-hired":
        raise InvalidTransition("hire item", item.status, request_type)
    if any(r.status == "pending" and r.request_type == request_type for r in item.requests):
        raise ValidationError(f"An {request_type} request is already pending")
    if request_type == "extension":
        if new_end_date is None:
            raise ValidationError("Extension requests need a new end date")
        if item.expected_off_hire and new_end_date <= item.expected_off_hire:
            raise ValidationError("New end date must be after the current end date")

    generated = not (details or "").strip()
    body = draft_request(item, request_type, new_end_date) if generated else details.strip()
    req = HireRequest(
        hire_item_id=item.id,
        request_type=request_type,
        requested_by=user.id,
        details=body,
        generated=generated,
        new_end_date=new_end_date,
        status="pending",
    )
    item.requests.append(req)
    if request_type == "off-hire":
        item.status = "off-hire-requested"

    if send and item.supplier_email:
        subject = f"{'Off-hire' if request_type == 'off-hire' else 'Hire extension'} request - {item.item_name}"
        if send_email(item.supplier_email, subject, body, reply_to=user.email):
            req.email_sent_at = utcnow()

    db.flush()
    record_action(db, user, "hire_request", req.id, "CREATE", context={"type": request_type, "item_id": str(item.id)})
    db.commit()
    db.refresh(req)
    log.info("hire_request_created", item_id=str(item.id), type=request_type)
    return req


def decide_request(db: Session, user: User, req: HireRequest, confirm: bool, today: date) -> HireRequest:
    """Confirm or reject a supplier request and apply its effect on the item."""
    target = "confirmed" if confirm else "rejected"
    if req.status != "pending":
        raise InvalidTransition("hire request", req.status, target)
    item = req.item
    req.status = target
    req.decided_by = user.id
    req.decided_at = utcnow()
    if req.request_type == "off-hire":
        if confirm:
            item.status = "off-hired"
            item.off_hired_on = today
        else:
            item.status = "live"
    elif req.request_type == "extension" and confirm:
        item.expected_off_hire = req.new_end_date
    record_action(db, user, "hire_request", req.id, "CONFIRM" if confirm else "REJECT")
    db.commit()
    db.refresh(req)
    return req


def get_request(db: Session, request_id: uuid.UUID) -> HireRequest:
    req = db.get(HireRequest, request_id)
    if not req:
        raise NotFoundError("Hire request", request_id)
    return req
