from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DeviceCreateRequest(BaseModel):
    asset_tag: str = Field(..., min_length=1, max_length=50)
    device_name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    cost: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = Field(None, max_length=2000)


class DeviceUpdateRequest(BaseModel):
    device_name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    cost: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=2000)
    # Other statuses follow the device's assignments
    status: Optional[Literal["SCRAPPED", "IN_STOCK"]] = None


class DeviceResponse(BaseModel):
    id: UUID
    asset_tag: str
    device_name: str
    category: str
    brand: Optional[str] = None
    serial_number: Optional[str] = None
    cost: float
    quantity: int
    status: str
    department_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DeviceAvailabilityResponse(BaseModel):
    device_id: UUID
    total: int
    assigned: int
    available: int
