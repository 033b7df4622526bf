# lume/subscriptions.py
"""
Subscription lifecycle: trial -> active -> expired (or cancelled).

Transitions are lazy. Nothing runs on a timer; every read re-evaluates the
record against "now" and the caller writes the result back.

  - evaluate()  pure, no I/O, safe to call anywhere
  - refresh()   evaluate + persist the transition (at most one store write)
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from lume.domain import SubscriptionRecord, SubscriptionStatus

if TYPE_CHECKING:
    from lume.identity_store import IdentityStore

logger = logging.getLogger(__name__)

TRIAL_DAYS = 3
RENEWAL_DAYS = 30


def evaluate(record: Optional[SubscriptionRecord], now: datetime) -> Optional[SubscriptionRecord]:
    """
    Effective subscription at `now`.

    Returns the same object when nothing changes, a copy with status=expired
    when a boundary has been reached. Boundaries are exact (now >= boundary).
    """
    if record is None:
        return None

    if record.status == SubscriptionStatus.TRIAL and now >= record.trial_ends_at:
        return record.with_status(SubscriptionStatus.EXPIRED)

    if record.status == SubscriptionStatus.ACTIVE and now >= record.current_period_end:
        return record.with_status(SubscriptionStatus.EXPIRED)

    # expired / cancelled are terminal for automatic transitions
    return record


def is_entitled(record: Optional[SubscriptionRecord]) -> bool:
    return record is not None and record.is_entitled


def days_left(record: Optional[SubscriptionRecord], now: datetime) -> int:
    """
    Whole days (rounded up) until the entitlement ends; 0 if not entitled.
    """
    current = evaluate(record, now)
    if not is_entitled(current):
        return 0

    if current.status == SubscriptionStatus.TRIAL:
        ends = current.trial_ends_at
    else:
        ends = current.current_period_end

    remaining = ends - now
    return max(0, math.ceil(remaining.total_seconds() / 86400))


async def refresh(
    store: "IdentityStore",
    record: Optional[SubscriptionRecord],
    now: datetime,
) -> Optional[SubscriptionRecord]:
    """
    evaluate() plus write-back: issues exactly one status update when a
    transition happened and none otherwise.
    """
    current = evaluate(record, now)
    if current is None or current is record:
        return current

    await store.update_subscription_status(current.id, current.status)
    logger.info(
        "Subscription %s of professional %s expired (was %s)",
        current.id,
        current.professional_id,
        record.status.value,
    )
    return current


# -------------------------------------------------------------------
# Originating records
# -------------------------------------------------------------------
def new_trial(professional_id: int, now: datetime, days: int = TRIAL_DAYS) -> SubscriptionRecord:
    """Draft of the one trial every professional gets on registration."""
    ends = now + timedelta(days=days)
    return SubscriptionRecord(
        professional_id=professional_id,
        status=SubscriptionStatus.TRIAL,
        trial_ends_at=ends,
        current_period_start=now,
        current_period_end=ends,
    )


def new_period(professional_id: int, now: datetime, days: int = RENEWAL_DAYS) -> SubscriptionRecord:
    ends = now + timedelta(days=days)
    return SubscriptionRecord(
        professional_id=professional_id,
        status=SubscriptionStatus.ACTIVE,
        trial_ends_at=now,
        current_period_start=now,
        current_period_end=ends,
    )


async def renew(
    store: "IdentityStore",
    professional_id: int,
    now: datetime,
    days: int = RENEWAL_DAYS,
) -> SubscriptionRecord:
    """
    External renewal action: the only way out of expired/cancelled.

    Creates a new active record; being the most recent, it supersedes the old one.
    """
    created = await store.create_subscription(new_period(professional_id, now, days))
    logger.info("Subscription renewed for professional %s until %s", professional_id, created.current_period_end)
    return created


async def cancel(
    store: "IdentityStore",
    record: SubscriptionRecord,
    now: datetime,
) -> SubscriptionRecord:
    if record.status == SubscriptionStatus.CANCELLED:
        return record

    cancelled = record.with_status(SubscriptionStatus.CANCELLED, cancelled_at=now)
    await store.update_subscription_status(cancelled.id, cancelled.status, cancelled_at=now)
    logger.info("Subscription %s of professional %s cancelled", record.id, record.professional_id)
    return cancelled
