from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, get_request_context, require_roles
from app.models import User, UserRole
from app.schemas.devices import (
    DeviceAvailabilityResponse,
    DeviceCreateRequest,
    DeviceResponse,
    DeviceUpdateRequest,
)
from app.services.device_service import DeviceService
from app.services.stock_ledger import StockLedger


router = APIRouter(prefix="/devices", tags=["Devices"])

require_inventory_staff = require_roles(UserRole.SUPER_ADMIN, UserRole.IT_STAFF)


@router.get("", response_model=List[DeviceResponse])
def list_devices(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List devices, optionally filtered by status or category."""
    return [
        DeviceResponse.model_validate(d)
        for d in DeviceService.list_devices(db, status=status, category=category)
    ]


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
def create_device(
    request: Request,
    data: DeviceCreateRequest,
    current_user: User = Depends(require_inventory_staff),
    db: Session = Depends(get_db),
):
    device = DeviceService.create_device(db, data, current_user, context=get_request_context(request))
    return DeviceResponse.model_validate(device)


@router.get("/{device_id}", response_model=DeviceResponse)
def get_device(
    device_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return DeviceResponse.model_validate(DeviceService.get_device(db, device_id))


@router.get("/{device_id}/availability", response_model=DeviceAvailabilityResponse)
def get_device_availability(
    device_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Units free for new assignments, computed from live assignments.
    Advisory only; every write re-checks stock.
    """
    return StockLedger.availability(db, device_id)


@router.patch("/{device_id}", response_model=DeviceResponse)
def update_device(
    request: Request,
    device_id: UUID,
    data: DeviceUpdateRequest,
    current_user: User = Depends(require_inventory_staff),
    db: Session = Depends(get_db),
):
    device = DeviceService.update_device(
        db, device_id, data, current_user, context=get_request_context(request)
    )
    return DeviceResponse.model_validate(device)


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(
    request: Request,
    device_id: UUID,
    current_user: User = Depends(require_roles(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
):
    DeviceService.delete_device(db, device_id, current_user, context=get_request_context(request))
