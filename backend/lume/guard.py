# lume/guard.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from lume import subscriptions
from lume.config import Targets
from lume.domain import ProfessionalActor, Role, Session
from lume.session import SessionManager

DEFAULT_TARGETS = Targets()


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class RedirectTo:
    target: str


AccessDecision = Union[Allow, RedirectTo]

ALLOW = Allow()


def decide(
    session: Optional[Session],
    requested_roles: Iterable[str],
    now: datetime,
    targets: Targets = DEFAULT_TARGETS,
) -> AccessDecision:
    """
    Central decision for every gated view:
      1) nobody logged in            -> login
      2) professional not entitled   -> subscription expired (even on allowed routes)
      3) role not in requested_roles -> the actor's own home
      4) otherwise                   -> allow

    Admins never hit (2). An empty requested_roles means "any logged-in actor".
    """
    if session is None:
        return RedirectTo(targets.login)

    actor = session.actor
    if isinstance(actor, ProfessionalActor):
        current = subscriptions.evaluate(actor.subscription, now)
        if not subscriptions.is_entitled(current):
            return RedirectTo(targets.subscription_expired)

    allowed = {Role(r) for r in requested_roles}
    if allowed and Role(actor.role) not in allowed:
        return RedirectTo(targets.role_home(actor.role))

    return ALLOW


async def authorize(
    manager: SessionManager,
    requested_roles: Iterable[str],
    now: Optional[datetime] = None,
    targets: Targets = DEFAULT_TARGETS,
) -> AccessDecision:
    """
    decide() against the manager's session, after persisting any lazy expiry
    the current moment causes.
    """
    now = now or manager.now()
    await manager.refresh_subscription(now)
    return decide(manager.session, requested_roles, now, targets)
