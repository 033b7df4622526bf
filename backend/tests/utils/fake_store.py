"""
In-memory IdentityStore for unit tests.

Mirrors the contract of lume.identity_store.SqlIdentityStore without a
database. Failures can be switched on per operation, and an asyncio.Event can
hold authenticate() open so tests can interleave a logout with a login.
"""
from __future__ import annotations

import asyncio
import itertools
from datetime import datetime
from typing import Optional

from lume.domain import (
    AdminRecord,
    Credential,
    ProfessionalRecord,
    SubscriptionRecord,
    SubscriptionStatus,
)
from lume.errors import DuplicateEmail, InvalidCredentials, StoreUnavailable
from lume.schemas import RegistrationProfile


class FakeIdentityStore:
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._tokens_seq = itertools.count(1)

        self.passwords: dict[str, tuple[int, str]] = {}
        self.admins: dict[int, AdminRecord] = {}
        self.professionals: dict[int, ProfessionalRecord] = {}
        self.subscriptions: list[SubscriptionRecord] = []
        self.tokens: dict[str, int] = {}
        self.revoked: set[str] = set()

        self.status_updates: list[tuple[int, SubscriptionStatus]] = []
        self.calls: list[str] = []

        # failure switches
        self.unavailable = False
        self.fail_invalidate = False
        self.fail_create_subscription = False

        # when set, authenticate() waits for it before answering
        self.authenticate_gate: Optional[asyncio.Event] = None

    # ---------------------------------------------------------------
    # seeding helpers
    # ---------------------------------------------------------------
    def add_admin(self, email: str, password: str, name: str = "Admin") -> AdminRecord:
        identity_id = next(self._ids)
        self.passwords[email] = (identity_id, password)
        admin = AdminRecord(id=next(self._ids), identity_id=identity_id, email=email, name=name)
        self.admins[identity_id] = admin
        return admin

    def add_professional(self, email: str, password: str, name: str = "Ana") -> ProfessionalRecord:
        identity_id = next(self._ids)
        self.passwords[email] = (identity_id, password)
        pro = ProfessionalRecord(id=next(self._ids), identity_id=identity_id, name=name, email=email)
        self.professionals[identity_id] = pro
        return pro

    def add_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        stored = record.model_copy(update={"id": next(self._ids)})
        self.subscriptions.append(stored)
        return stored

    def latest_for(self, professional_id: int) -> Optional[SubscriptionRecord]:
        rows = [s for s in self.subscriptions if s.professional_id == professional_id]
        return rows[-1] if rows else None

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.unavailable:
            raise StoreUnavailable()

    def _issue(self, identity_id: int) -> Credential:
        token = f"tok-{next(self._tokens_seq)}"
        self.tokens[token] = identity_id
        return Credential(token=token, identity_id=identity_id)

    # ---------------------------------------------------------------
    # IdentityStore
    # ---------------------------------------------------------------
    async def authenticate(self, email: str, password: str) -> Credential:
        self._check("authenticate")
        if self.authenticate_gate is not None:
            await self.authenticate_gate.wait()

        entry = self.passwords.get(email.strip().lower())
        if entry is None or entry[1] != password:
            raise InvalidCredentials()
        return self._issue(entry[0])

    async def create_identity(self, profile: RegistrationProfile) -> Credential:
        self._check("create_identity")
        if profile.email in self.passwords:
            raise DuplicateEmail()

        identity_id = next(self._ids)
        self.passwords[profile.email] = (identity_id, profile.password)
        self.professionals[identity_id] = ProfessionalRecord(
            id=next(self._ids),
            identity_id=identity_id,
            name=profile.name,
            email=profile.email,
            phone=profile.phone,
            city=profile.city,
            state=profile.state,
            specialty=profile.specialty,
            registration_number=profile.registration_number,
        )
        return self._issue(identity_id)

    async def resolve_credential(self, token: str) -> Optional[int]:
        self._check("resolve_credential")
        if token in self.revoked:
            return None
        return self.tokens.get(token)

    async def invalidate(self, token: str) -> None:
        self._check("invalidate")
        if self.fail_invalidate:
            raise StoreUnavailable()
        self.revoked.add(token)

    async def find_admin_by_identity(self, identity_id: int) -> Optional[AdminRecord]:
        self._check("find_admin_by_identity")
        return self.admins.get(identity_id)

    async def find_professional_by_identity(self, identity_id: int) -> Optional[ProfessionalRecord]:
        self._check("find_professional_by_identity")
        return self.professionals.get(identity_id)

    async def find_latest_subscription(self, professional_id: int) -> Optional[SubscriptionRecord]:
        self._check("find_latest_subscription")
        return self.latest_for(professional_id)

    async def update_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        cancelled_at: Optional[datetime] = None,
    ) -> None:
        self._check("update_subscription_status")
        self.status_updates.append((subscription_id, status))
        for i, row in enumerate(self.subscriptions):
            if row.id == subscription_id:
                self.subscriptions[i] = row.with_status(status, cancelled_at=cancelled_at)
                return
        raise StoreUnavailable(f"Subscription {subscription_id} not found.")

    async def create_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        self._check("create_subscription")
        if self.fail_create_subscription:
            raise StoreUnavailable()
        return self.add_subscription(record)

    async def create_admin(self, email: str, password: str, name: str = "Administrator") -> AdminRecord:
        self._check("create_admin")
        if email in self.passwords:
            raise DuplicateEmail()
        return self.add_admin(email, password, name)
