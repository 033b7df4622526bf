# lume/domain.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    ADMIN = "admin"
    PROFESSIONAL = "professional"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Only these statuses grant entitlement.
ENTITLED_STATUSES = frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE})


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


# -------------------------------------------------------------------
# Store records
# -------------------------------------------------------------------
class SubscriptionRecord(_Record):
    """
    One billing period of a professional.

    id is None only for a draft that has not been written to the store yet.
    Timestamps are timezone-aware UTC.
    """
    id: Optional[int] = None
    professional_id: int
    status: SubscriptionStatus
    trial_ends_at: datetime
    current_period_start: datetime
    current_period_end: datetime
    cancelled_at: Optional[datetime] = None

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES

    def with_status(
        self,
        status: SubscriptionStatus,
        cancelled_at: Optional[datetime] = None,
    ) -> "SubscriptionRecord":
        update: dict = {"status": status}
        if cancelled_at is not None:
            update["cancelled_at"] = cancelled_at
        return self.model_copy(update=update)


class AdminRecord(_Record):
    id: int
    identity_id: int
    email: str
    name: str = ""


class ProfessionalRecord(_Record):
    id: int
    identity_id: int
    name: str
    email: str
    phone: str = ""
    city: str = ""
    state: str = ""
    specialty: str = ""
    registration_number: str = ""


class Credential(_Record):
    token: str
    identity_id: int


# -------------------------------------------------------------------
# Actors (discriminated on role)
# -------------------------------------------------------------------
class AdminActor(_Record):
    role: Literal["admin"] = "admin"
    id: int
    email: str
    name: str = ""


class ProfessionalActor(_Record):
    role: Literal["professional"] = "professional"
    id: int
    email: str
    name: str = ""
    professional: ProfessionalRecord
    subscription: Optional[SubscriptionRecord] = None

    def with_subscription(self, subscription: Optional[SubscriptionRecord]) -> "ProfessionalActor":
        return self.model_copy(update={"subscription": subscription})


Actor = Annotated[Union[AdminActor, ProfessionalActor], Field(discriminator="role")]


class Session(_Record):
    """The single authenticated slot: who is acting, and with which bearer token."""
    actor: Actor
    credential: str


class SessionSnapshot(_Record):
    """What gets persisted locally between process restarts."""
    credential: str
    actor: Actor


def admin_actor(record: AdminRecord) -> AdminActor:
    return AdminActor(id=record.id, email=record.email, name=record.name)


def professional_actor(
    record: ProfessionalRecord,
    subscription: Optional[SubscriptionRecord],
) -> ProfessionalActor:
    return ProfessionalActor(
        id=record.id,
        email=record.email,
        name=record.name,
        professional=record,
        subscription=subscription,
    )
