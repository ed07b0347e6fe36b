"""Per-appointment staff actions."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from clinicq.models.appointment import PaymentMethod
from clinicq.services import lifecycle
from clinicq.services.appointments import (
    AppointmentRead,
    delete_appointment,
    get_appointment,
    record_payment,
)

router = APIRouter()


class PaymentRequest(BaseModel):
    method: PaymentMethod
    fee: Optional[int] = Field(default=None, ge=0)


@router.get("/{appointment_id}", response_model=AppointmentRead)
def read_appointment(appointment_id: str) -> AppointmentRead:
    return get_appointment(appointment_id)


@router.post("/{appointment_id}/check-in", response_model=AppointmentRead)
def check_in(appointment_id: str) -> AppointmentRead:
    """Mark the patient as being seen. Fails if someone else is ongoing."""

    return lifecycle.check_in(appointment_id)


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
def complete(appointment_id: str) -> AppointmentRead:
    return lifecycle.complete(appointment_id)


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel(appointment_id: str) -> AppointmentRead:
    return lifecycle.cancel(appointment_id)


@router.post("/{appointment_id}/payment", response_model=AppointmentRead)
def pay(appointment_id: str, payload: PaymentRequest) -> AppointmentRead:
    return record_payment(appointment_id, payload.method, payload.fee)


@router.delete("/{appointment_id}", response_model=AppointmentRead)
def remove(appointment_id: str) -> AppointmentRead:
    """Administrative delete; the token is not reissued."""

    return delete_appointment(appointment_id)
