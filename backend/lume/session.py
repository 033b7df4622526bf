# lume/session.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from lume import subscriptions
from lume.clock import Clock, utcnow
from lume.domain import (
    Actor,
    Credential,
    ProfessionalActor,
    Role,
    Session,
    SessionSnapshot,
    SubscriptionRecord,
    SubscriptionStatus,
    admin_actor,
    professional_actor,
)
from lume.errors import (
    AuthError,
    InvalidCredentials,
    ProfileValidationError,
    SessionSuperseded,
    StaleSession,
    StoreUnavailable,
)
from lume.identity_store import IdentityStore
from lume.schemas import RegistrationProfile
from lume.snapshots import CorruptSnapshot, SnapshotStore

logger = logging.getLogger(__name__)


def _profile_errors(exc: ValidationError) -> dict[str, str]:
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "__root__"
        fields.setdefault(loc, err.get("msg", "invalid"))
    return fields


class SessionManager:
    """
    Owns the single authentication slot of this process.

    Lifecycle:
      restore()  once at start-up, from the local snapshot (revalidated)
      login() / register()  fill the slot
      logout()   empties it, locally even if the store is down

    Every login/register/logout takes a generation number when it starts.
    Its result is only written to the slot if no later mutation has started
    in the meantime; a superseded login/register revokes its own credential
    and raises SessionSuperseded.
    """

    def __init__(
        self,
        store: IdentityStore,
        snapshots: SnapshotStore,
        *,
        clock: Clock = utcnow,
        trial_days: int = subscriptions.TRIAL_DAYS,
        renewal_days: int = subscriptions.RENEWAL_DAYS,
    ) -> None:
        self._store = store
        self._snapshots = snapshots
        self._clock = clock
        self._trial_days = trial_days
        self._renewal_days = renewal_days

        self._slot: Optional[Session] = None
        self._generation = 0
        self._pending = 0
        self._restored = False
        self._restore_lock = asyncio.Lock()

    # ---------------------------------------------------------------
    # Read side
    # ---------------------------------------------------------------
    def now(self) -> datetime:
        return self._clock()

    @property
    def store(self) -> IdentityStore:
        return self._store

    @property
    def session(self) -> Optional[Session]:
        return self._slot

    @property
    def actor(self) -> Optional[Actor]:
        return self._slot.actor if self._slot else None

    @property
    def is_authenticated(self) -> bool:
        return self._slot is not None

    @property
    def is_loading(self) -> bool:
        """True until the first restore finishes and while a mutation is in flight."""
        return not self._restored or self._pending > 0

    @property
    def has_active_subscription(self) -> bool:
        actor = self.actor
        if actor is None:
            return False
        if actor.role == Role.ADMIN:
            return True
        return subscriptions.is_entitled(subscriptions.evaluate(actor.subscription, self._clock()))

    @property
    def is_trial_active(self) -> bool:
        actor = self.actor
        if not isinstance(actor, ProfessionalActor):
            return False
        current = subscriptions.evaluate(actor.subscription, self._clock())
        return current is not None and current.status == SubscriptionStatus.TRIAL

    # ---------------------------------------------------------------
    # Slot bookkeeping
    # ---------------------------------------------------------------
    def _begin(self) -> int:
        self._generation += 1
        self._pending += 1
        return self._generation

    def _end(self) -> None:
        self._pending -= 1

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _commit(self, actor: Actor, credential: str) -> Session:
        session = Session(actor=actor, credential=credential)
        self._snapshots.save(SessionSnapshot(credential=credential, actor=actor))
        self._slot = session
        return session

    def _clear_local(self) -> None:
        self._slot = None
        try:
            self._snapshots.clear()
        except OSError:
            logger.exception("Could not remove the session snapshot at %s", self._snapshots.path)

    async def _discard_credential(self, token: str) -> None:
        try:
            await self._store.invalidate(token)
        except StoreUnavailable:
            logger.warning("Could not revoke a superseded credential; it will expire on its own")

    async def _resolve_actor(self, identity_id: int, now: datetime) -> Optional[Actor]:
        # Admin records win if an identity somehow has both.
        admin = await self._store.find_admin_by_identity(identity_id)
        if admin is not None:
            return admin_actor(admin)

        professional = await self._store.find_professional_by_identity(identity_id)
        if professional is None:
            return None

        latest = await self._store.find_latest_subscription(professional.id)
        current = await subscriptions.refresh(self._store, latest, now)
        return professional_actor(professional, current)

    # ---------------------------------------------------------------
    # restore
    # ---------------------------------------------------------------
    async def restore(self) -> Optional[Session]:
        """
        Re-establish the session saved by a previous run.

        The snapshot is only a hint: the credential must still resolve at the
        store and the store's actor must have the same role, otherwise the
        snapshot is deleted and the session stays empty.
        """
        async with self._restore_lock:
            if self._restored:
                return self._slot

            generation = self._begin()
            try:
                return await self._restore(generation)
            finally:
                self._restored = True
                self._end()

    async def _restore(self, generation: int) -> Optional[Session]:
        try:
            snapshot = self._snapshots.load()
        except CorruptSnapshot:
            logger.warning("Discarding unreadable session snapshot at %s", self._snapshots.path)
            self._clear_local()
            return None

        if snapshot is None:
            return None

        now = self._clock()
        try:
            actor = await self._revalidate(snapshot, now)
        except StaleSession as e:
            logger.info("Saved session rejected (%s); starting logged out", e.message)
            if self._is_current(generation):
                self._clear_local()
            return None

        if not self._is_current(generation):
            return self._slot

        session = self._commit(actor, snapshot.credential)
        logger.info("Session restored for %s %s", actor.role, actor.id)
        return session

    async def _revalidate(self, snapshot: SessionSnapshot, now: datetime) -> Actor:
        identity_id = await self._store.resolve_credential(snapshot.credential)
        if identity_id is None:
            raise StaleSession("credential no longer valid")

        actor = await self._resolve_actor(identity_id, now)
        if actor is None:
            raise StaleSession("no account behind the credential")
        if actor.role != snapshot.actor.role or actor.id != snapshot.actor.id:
            raise StaleSession("saved actor does not match the account")
        return actor

    # ---------------------------------------------------------------
    # login / register
    # ---------------------------------------------------------------
    async def _establish(self, generation: int, credential: Credential, now: datetime) -> Actor:
        actor = await self._resolve_actor(credential.identity_id, now)
        if actor is None:
            # Valid password but no admin/professional record: same answer as a bad password.
            await self._discard_credential(credential.token)
            raise InvalidCredentials()

        if not self._is_current(generation):
            await self._discard_credential(credential.token)
            raise SessionSuperseded()

        self._commit(actor, credential.token)
        return actor

    async def login(self, email: str, password: str) -> Actor:
        """
        Authenticate and fill the slot. Returns the actor so the caller can
        route by role. InvalidCredentials does not say whether the email exists.
        """
        generation = self._begin()
        try:
            credential = await self._store.authenticate(email, password)
            actor = await self._establish(generation, credential, self._clock())
        except AuthError as e:
            logger.info("Login failed: %s", e.code)
            raise
        finally:
            self._end()

        logger.info("Logged in %s %s", actor.role, actor.id)
        return actor

    async def register(self, profile: Union[RegistrationProfile, Mapping[str, Any]]) -> Actor:
        """
        Create a professional account with its 3-day trial and log it in.

        The trial is written after the credential; if that write fails the
        whole call fails and the account is left for the store to reconcile.
        """
        if not isinstance(profile, RegistrationProfile):
            try:
                profile = RegistrationProfile.model_validate(profile)
            except ValidationError as e:
                raise ProfileValidationError(fields=_profile_errors(e)) from e

        generation = self._begin()
        try:
            now = self._clock()
            credential = await self._store.create_identity(profile)

            professional = await self._store.find_professional_by_identity(credential.identity_id)
            if professional is None:
                raise StoreUnavailable("The new account could not be read back.")

            try:
                await self._store.create_subscription(
                    subscriptions.new_trial(professional.id, now, self._trial_days)
                )
            except AuthError:
                logger.warning(
                    "Trial creation failed for professional %s; credential left orphaned",
                    professional.id,
                )
                raise

            actor = await self._establish(generation, credential, now)
        finally:
            self._end()

        logger.info("Registered professional %s on a %s-day trial", actor.id, self._trial_days)
        return actor

    # ---------------------------------------------------------------
    # logout
    # ---------------------------------------------------------------
    async def logout(self) -> None:
        """
        Revoke the credential at the store, then forget the session locally.

        The local half always happens; a store failure is only logged.
        """
        self._begin()
        session = self._slot
        try:
            if session is not None:
                await self._store.invalidate(session.credential)
        except StoreUnavailable:
            logger.warning("Remote logout failed; cleared the local session anyway")
        finally:
            self._clear_local()
            self._end()

        if session is not None:
            logger.info("Logged out %s %s", session.actor.role, session.actor.id)

    # ---------------------------------------------------------------
    # subscription refresh
    # ---------------------------------------------------------------
    def _replace_subscription(self, subscription: Optional[SubscriptionRecord]) -> None:
        session = self._slot
        if session is None or not isinstance(session.actor, ProfessionalActor):
            return
        if session.actor.subscription == subscription:
            return
        self._commit(session.actor.with_subscription(subscription), session.credential)

    async def refresh_subscription(self, now: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
        """
        Re-evaluate the session's subscription at `now` and write back any
        lazy expiry. No-op for admins and when logged out.
        """
        actor = self.actor
        if not isinstance(actor, ProfessionalActor):
            return None

        current = await subscriptions.refresh(self._store, actor.subscription, now or self._clock())
        if self._slot is not None and self._slot.actor is actor:
            self._replace_subscription(current)
        return current

    async def sync_subscription(self, now: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
        """
        Reload the latest subscription from the store (e.g. after a renewal
        made elsewhere), evaluate it and put it into the session.
        """
        actor = self.actor
        if not isinstance(actor, ProfessionalActor):
            return None

        latest = await self._store.find_latest_subscription(actor.professional.id)
        current = await subscriptions.refresh(self._store, latest, now or self._clock())
        if self._slot is not None and self._slot.actor is actor:
            self._replace_subscription(current)
        return current

    async def renew_subscription(self, now: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
        """
        Start a new paid period for the session's professional and put it into
        the session. No-op for admins and when logged out.
        """
        actor = self.actor
        if not isinstance(actor, ProfessionalActor):
            return None

        renewed = await subscriptions.renew(
            self._store, actor.professional.id, now or self._clock(), self._renewal_days
        )
        if self._slot is not None and self._slot.actor is actor:
            self._replace_subscription(renewed)
        return renewed
