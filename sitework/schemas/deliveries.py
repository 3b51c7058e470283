import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeliveryItem(BaseModel):
    item: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    description: Optional[str] = None


class DeliveryMethod(BaseModel):
    pallets: int = Field(default=0, ge=0)
    unload_method: Optional[str] = "Manual"


class VehicleDetails(BaseModel):
    type: Optional[str] = None
    supplier: Optional[str] = None
    over_35t: bool = False
    weight: Optional[str] = None
    fors_number: Optional[str] = None
    colour: Optional[str] = None


class BookingCreate(BaseModel):
    project_id: Optional[uuid.UUID] = None
    supplier: str = Field(min_length=1)
    delivery_date: date
    delivery_time: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    items: List[DeliveryItem] = Field(min_length=1)
    delivery_method: DeliveryMethod = DeliveryMethod()
    vehicle_details: VehicleDetails = VehicleDetails()
    notes: Optional[str] = None


class BookingReject(BaseModel):
    reason: Optional[str] = None


class BookingResponse(BaseModel):
    id: uuid.UUID
    request_id: str
    project_id: uuid.UUID
    submitted_by: Optional[uuid.UUID] = None
    supplier: str
    delivery_date: date
    delivery_time: str
    items: List[dict]
    delivery_method: Optional[dict] = None
    vehicle_details: Optional[dict] = None
    notes: Optional[str] = None
    status: str
    booking_reference: Optional[str] = None
    booking_time: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
