# lume/identity_store.py
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from lume import auth, models
from lume.clock import Clock, as_utc, to_naive_utc, utcnow
from lume.domain import (
    AdminRecord,
    Credential,
    ProfessionalRecord,
    SubscriptionRecord,
    SubscriptionStatus,
)
from lume.errors import AuthError, DuplicateEmail, InvalidCredentials, StoreUnavailable
from lume.schemas import RegistrationProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentityStore(Protocol):
    """
    Everything the session core needs from the account backend.

    All calls may suspend. I/O failures surface as StoreUnavailable.
    """

    async def authenticate(self, email: str, password: str) -> Credential: ...

    async def create_identity(self, profile: RegistrationProfile) -> Credential: ...

    async def resolve_credential(self, token: str) -> Optional[int]: ...

    async def invalidate(self, token: str) -> None: ...

    async def find_admin_by_identity(self, identity_id: int) -> Optional[AdminRecord]: ...

    async def find_professional_by_identity(self, identity_id: int) -> Optional[ProfessionalRecord]: ...

    async def find_latest_subscription(self, professional_id: int) -> Optional[SubscriptionRecord]: ...

    async def update_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        cancelled_at=None,
    ) -> None: ...

    async def create_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord: ...

    async def create_admin(self, email: str, password: str, name: str = "Administrator") -> AdminRecord: ...


# -------------------------------------------------------------------
# Row -> record helpers
# -------------------------------------------------------------------
def _subscription_record(row: models.Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        professional_id=row.professional_id,
        status=SubscriptionStatus(row.status),
        trial_ends_at=as_utc(row.trial_ends_at),
        current_period_start=as_utc(row.current_period_start),
        current_period_end=as_utc(row.current_period_end),
        cancelled_at=as_utc(row.cancelled_at),
    )


class SqlIdentityStore:
    """
    IdentityStore on top of SQLAlchemy.

    The ORM work is blocking, so each call runs in Starlette's threadpool with
    its own session. Bearer tokens are JWTs backed by an auth_tokens row, which
    is what makes invalidate() stick.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        secret_key: str,
        algorithm: str = "HS256",
        token_expire_minutes: int = 1440,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._token_expire_minutes = token_expire_minutes
        self._clock = clock

    async def _run(self, fn: Callable[..., T], *args) -> T:
        try:
            return await run_in_threadpool(fn, *args)
        except AuthError:
            raise
        except SQLAlchemyError as e:
            logger.warning("Identity store call %s failed: %s", fn.__name__, e)
            raise StoreUnavailable() from e

    # ---------------------------------------------------------------
    # Credentials
    # ---------------------------------------------------------------
    def _issue_token(self, db: Session, identity: models.AuthIdentity) -> Credential:
        token_id = auth.new_token_id()
        issued = self._clock()
        token, expires = auth.create_access_token(
            identity_id=identity.id,
            token_id=token_id,
            subject=identity.email,
            secret_key=self._secret_key,
            algorithm=self._algorithm,
            expires_minutes=self._token_expire_minutes,
            issued_at=issued,
        )
        db.add(
            models.AuthToken(
                jti=token_id,
                identity_id=identity.id,
                issued_at=to_naive_utc(issued),
                expires_at=to_naive_utc(expires),
            )
        )
        return Credential(token=token, identity_id=identity.id)

    def _authenticate(self, email: str, password: str) -> Credential:
        with self._session_factory() as db:
            identity = db.scalar(
                select(models.AuthIdentity).where(models.AuthIdentity.email == auth.normalize_email(email))
            )
            if identity is None:
                auth.burn_password_check()
                raise InvalidCredentials()
            if not auth.verify_password(password, identity.hashed_password):
                raise InvalidCredentials()

            credential = self._issue_token(db, identity)
            db.commit()
            return credential

    async def authenticate(self, email: str, password: str) -> Credential:
        return await self._run(self._authenticate, email, password)

    def _create_identity(self, profile: RegistrationProfile) -> Credential:
        email = auth.normalize_email(profile.email)
        with self._session_factory() as db:
            exists = db.scalar(select(models.AuthIdentity.id).where(models.AuthIdentity.email == email))
            if exists is not None:
                raise DuplicateEmail()

            identity = models.AuthIdentity(email=email, hashed_password=auth.hash_password(profile.password))
            db.add(identity)
            try:
                db.flush()
            except IntegrityError as e:
                # lost a race with another sign-up for the same email
                db.rollback()
                raise DuplicateEmail() from e

            db.add(
                models.Professional(
                    identity_id=identity.id,
                    name=profile.name,
                    email=email,
                    phone=profile.phone,
                    city=profile.city,
                    state=profile.state,
                    specialty=profile.specialty,
                    registration_number=profile.registration_number,
                )
            )
            credential = self._issue_token(db, identity)
            db.commit()
            return credential

    async def create_identity(self, profile: RegistrationProfile) -> Credential:
        return await self._run(self._create_identity, profile)

    def _resolve_credential(self, token: str) -> Optional[int]:
        try:
            payload = auth.decode_token(token, secret_key=self._secret_key, algorithm=self._algorithm)
            identity_id = int(payload["iid"])
            token_id = str(payload["jti"])
        except (ValueError, TypeError):
            return None

        with self._session_factory() as db:
            row = db.get(models.AuthToken, token_id)
            if row is None or row.revoked_at is not None or row.identity_id != identity_id:
                return None
            if as_utc(row.expires_at) <= self._clock():
                return None
            return identity_id

    async def resolve_credential(self, token: str) -> Optional[int]:
        return await self._run(self._resolve_credential, token)

    def _invalidate(self, token: str) -> None:
        try:
            payload = auth.decode_token(token, secret_key=self._secret_key, algorithm=self._algorithm)
        except ValueError:
            # Nothing we issued (or already expired): nothing to revoke.
            return

        with self._session_factory() as db:
            row = db.get(models.AuthToken, str(payload["jti"]))
            if row is None or row.revoked_at is not None:
                return
            row.revoked_at = to_naive_utc(self._clock())
            db.commit()

    async def invalidate(self, token: str) -> None:
        await self._run(self._invalidate, token)

    # ---------------------------------------------------------------
    # Actor records
    # ---------------------------------------------------------------
    def _find_admin(self, identity_id: int) -> Optional[AdminRecord]:
        with self._session_factory() as db:
            row = db.scalar(select(models.Admin).where(models.Admin.identity_id == identity_id))
            return AdminRecord.model_validate(row) if row else None

    async def find_admin_by_identity(self, identity_id: int) -> Optional[AdminRecord]:
        return await self._run(self._find_admin, identity_id)

    def _find_professional(self, identity_id: int) -> Optional[ProfessionalRecord]:
        with self._session_factory() as db:
            row = db.scalar(select(models.Professional).where(models.Professional.identity_id == identity_id))
            return ProfessionalRecord.model_validate(row) if row else None

    async def find_professional_by_identity(self, identity_id: int) -> Optional[ProfessionalRecord]:
        return await self._run(self._find_professional, identity_id)

    def _create_admin(self, email: str, password: str, name: str) -> AdminRecord:
        email_n = auth.normalize_email(email)
        with self._session_factory() as db:
            exists = db.scalar(select(models.AuthIdentity.id).where(models.AuthIdentity.email == email_n))
            if exists is not None:
                raise DuplicateEmail()

            identity = models.AuthIdentity(email=email_n, hashed_password=auth.hash_password(password))
            db.add(identity)
            db.flush()
            admin = models.Admin(identity_id=identity.id, email=email_n, name=name)
            db.add(admin)
            db.commit()
            return AdminRecord.model_validate(admin)

    async def create_admin(self, email: str, password: str, name: str = "Administrator") -> AdminRecord:
        return await self._run(self._create_admin, email, password, name)

    # ---------------------------------------------------------------
    # Subscriptions
    # ---------------------------------------------------------------
    def _find_latest_subscription(self, professional_id: int) -> Optional[SubscriptionRecord]:
        with self._session_factory() as db:
            row = db.scalar(
                select(models.Subscription)
                .where(models.Subscription.professional_id == professional_id)
                .order_by(models.Subscription.created_at.desc(), models.Subscription.id.desc())
                .limit(1)
            )
            return _subscription_record(row) if row else None

    async def find_latest_subscription(self, professional_id: int) -> Optional[SubscriptionRecord]:
        return await self._run(self._find_latest_subscription, professional_id)

    def _update_subscription_status(self, subscription_id: int, status: SubscriptionStatus, cancelled_at) -> None:
        with self._session_factory() as db:
            row = db.get(models.Subscription, subscription_id)
            if row is None:
                raise StoreUnavailable(f"Subscription {subscription_id} not found.")
            row.status = SubscriptionStatus(status).value
            if cancelled_at is not None:
                row.cancelled_at = to_naive_utc(cancelled_at)
            db.commit()

    async def update_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        cancelled_at=None,
    ) -> None:
        await self._run(self._update_subscription_status, subscription_id, status, cancelled_at)

    def _create_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        with self._session_factory() as db:
            row = models.Subscription(
                professional_id=record.professional_id,
                status=record.status.value,
                trial_ends_at=to_naive_utc(record.trial_ends_at),
                current_period_start=to_naive_utc(record.current_period_start),
                current_period_end=to_naive_utc(record.current_period_end),
                cancelled_at=to_naive_utc(record.cancelled_at) if record.cancelled_at else None,
            )
            db.add(row)
            db.commit()
            return _subscription_record(row)

    async def create_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        return await self._run(self._create_subscription, record)
