"""Clinic registry: signup, settings edits and the public profile."""

from __future__ import annotations

import logging
from datetime import datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from clinicq.models.clinic import Clinic, ClinicStatus
from clinicq.services.db import get_session
from clinicq.services.errors import InvalidConfiguration, NotFound
from clinicq.services.hours import generate_slots
from clinicq.utils.config import get_settings

LOGGER = logging.getLogger(__name__)


class ClinicCreate(BaseModel):
    slug: str = Field(min_length=1, max_length=120, pattern=r"^[a-z0-9][a-z0-9-]*$")
    name: str = Field(min_length=1, max_length=255)
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None
    address: Optional[str] = None
    mobile: Optional[str] = None
    morning_start: Optional[time] = None
    morning_end: Optional[time] = None
    evening_start: Optional[time] = None
    evening_end: Optional[time] = None
    slot_duration: Optional[int] = None
    consultation_fee: int = Field(default=500, ge=0)


class ClinicSettingsUpdate(BaseModel):
    """Partial settings edit; only fields that are sent are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None
    address: Optional[str] = None
    mobile: Optional[str] = None
    morning_start: Optional[time] = None
    morning_end: Optional[time] = None
    evening_start: Optional[time] = None
    evening_end: Optional[time] = None
    slot_duration: Optional[int] = None
    consultation_fee: Optional[int] = Field(default=None, ge=0)
    clinic_status: Optional[ClinicStatus] = None


class ClinicRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None
    address: Optional[str] = None
    mobile: Optional[str] = None
    morning_start: Optional[time] = None
    morning_end: Optional[time] = None
    evening_start: Optional[time] = None
    evening_end: Optional[time] = None
    slot_duration: int
    consultation_fee: int
    clinic_status: ClinicStatus
    created_at: datetime


class PublicProfile(BaseModel):
    """Clinic profile plus its bookable times.

    An empty ``slots`` list means the clinic has no published hours and
    patients should call it directly.
    """

    clinic: ClinicRead
    slots: List[time]


def create_clinic(payload: ClinicCreate) -> ClinicRead:
    data = payload.model_dump()
    if data["slot_duration"] is None:
        data["slot_duration"] = get_settings().default_slot_duration_minutes

    try:
        with get_session() as session:
            clinic = Clinic(**data)
            clinic.operating_hours().validate()
            session.add(clinic)
            session.flush()
            result = ClinicRead.model_validate(clinic)
    except IntegrityError as exc:
        raise InvalidConfiguration(f"Slug '{payload.slug}' is already taken") from exc

    LOGGER.info("Clinic %s registered as '%s'", result.id, result.slug)
    return result


def update_clinic(clinic_id: str, payload: ClinicSettingsUpdate) -> ClinicRead:
    changes = payload.model_dump(exclude_unset=True)

    with get_session() as session:
        clinic = session.get(Clinic, clinic_id, with_for_update=True)
        if clinic is None:
            raise NotFound(f"Clinic {clinic_id} not found")
        for field, value in changes.items():
            if field == "slot_duration" and value is None:
                value = get_settings().default_slot_duration_minutes
            setattr(clinic, field, value)
        clinic.operating_hours().validate()
        session.flush()
        result = ClinicRead.model_validate(clinic)

    LOGGER.info("Clinic %s settings updated: %s", clinic_id, sorted(changes))
    return result


def get_clinic(clinic_id: str) -> ClinicRead:
    with get_session(read_only=True) as session:
        clinic = session.get(Clinic, clinic_id)
        if clinic is None:
            raise NotFound(f"Clinic {clinic_id} not found")
        return ClinicRead.model_validate(clinic)


def get_clinic_by_slug(slug: str) -> ClinicRead:
    with get_session(read_only=True) as session:
        clinic = session.scalars(select(Clinic).where(Clinic.slug == slug)).first()
        if clinic is None:
            raise NotFound(f"Clinic '{slug}' not found")
        return ClinicRead.model_validate(clinic)


def list_slots(clinic_id: str) -> List[time]:
    with get_session(read_only=True) as session:
        clinic = session.get(Clinic, clinic_id)
        if clinic is None:
            raise NotFound(f"Clinic {clinic_id} not found")
        return generate_slots(clinic.operating_hours())


def get_public_profile(slug: str) -> PublicProfile:
    with get_session(read_only=True) as session:
        clinic = session.scalars(select(Clinic).where(Clinic.slug == slug)).first()
        if clinic is None:
            raise NotFound(f"Clinic '{slug}' not found")
        return PublicProfile(
            clinic=ClinicRead.model_validate(clinic),
            slots=generate_slots(clinic.operating_hours()),
        )
