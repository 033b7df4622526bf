# lume/web.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from lume import schemas, subscriptions
from lume.config import Settings, load_settings
from lume.database import init_db, make_engine, make_session_factory
from lume.domain import Actor, ProfessionalActor, Role
from lume.errors import (
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    ProfileValidationError,
    SessionSuperseded,
    StoreUnavailable,
)
from lume.guard import RedirectTo, authorize
from lume.identity_store import SqlIdentityStore
from lume.log import configure_logging
from lume.session import SessionManager
from lume.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class AccessRedirect(Exception):
    def __init__(self, target: str, code: str, status_code: int) -> None:
        super().__init__(target)
        self.target = target
        self.code = code
        self.status_code = status_code


_ERROR_STATUS = {
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    DuplicateEmail: status.HTTP_409_CONFLICT,
    ProfileValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    SessionSuperseded: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


# -------------------------------------------------
# Dependencies
# -------------------------------------------------
def get_manager(request: Request) -> SessionManager:
    return request.app.state.manager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_roles(*roles: str):
    """
    Gate for a view. Empty roles = any logged-in actor with access.

    While the session is still resolving the view is not rendered at all
    (503 + SESSION_LOADING) so nothing races the restore.
    """

    async def _guard(
        manager: SessionManager = Depends(get_manager),
        settings: Settings = Depends(get_settings),
    ) -> Actor:
        if manager.is_loading:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"code": "SESSION_LOADING", "message": "Loading..."},
            )

        decision = await authorize(manager, roles, targets=settings.targets)
        if isinstance(decision, RedirectTo):
            targets = settings.targets
            if decision.target == targets.login:
                raise AccessRedirect(decision.target, "NOT_AUTHENTICATED", status.HTTP_401_UNAUTHORIZED)
            if decision.target == targets.subscription_expired:
                raise AccessRedirect(decision.target, "SUBSCRIPTION_EXPIRED", status.HTTP_402_PAYMENT_REQUIRED)
            raise AccessRedirect(decision.target, "ROLE_NOT_ALLOWED", status.HTTP_403_FORBIDDEN)

        return manager.actor

    return _guard


# -------------------------------------------------
# Exception handlers
# -------------------------------------------------
async def access_redirect_handler(request: Request, exc: AccessRedirect):
    # Browser -> follow the redirect; API client -> JSON with where to go.
    if _wants_html(request):
        return RedirectResponse(url=exc.target, status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"code": exc.code, "location": exc.target}},
    )


async def auth_error_handler(request: Request, exc: AuthError):
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_detail()})


def _session_state(manager: SessionManager) -> schemas.SessionStateOut:
    actor = manager.actor
    days: Optional[int] = None
    if isinstance(actor, ProfessionalActor):
        days = subscriptions.days_left(actor.subscription, manager.now())
    return schemas.SessionStateOut(
        is_authenticated=manager.is_authenticated,
        is_loading=manager.is_loading,
        has_active_subscription=manager.has_active_subscription,
        is_trial_active=manager.is_trial_active,
        role=actor.role if actor else None,
        actor=actor.model_dump(mode="json") if actor else None,
        days_left=days,
    )


# -------------------------------------------------
# APP SETUP
# -------------------------------------------------
def build_manager(settings: Settings) -> SessionManager:
    engine = make_engine(settings.database_url)
    init_db(engine)
    store = SqlIdentityStore(
        make_session_factory(engine),
        secret_key=settings.secret_key,
        algorithm=settings.algorithm,
        token_expire_minutes=settings.access_token_expire_minutes,
    )
    return SessionManager(
        store,
        SnapshotStore(settings.snapshot_path),
        trial_days=settings.trial_days,
        renewal_days=settings.renewal_days,
    )


def create_app(settings: Optional[Settings] = None, manager: Optional[SessionManager] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)
    manager = manager or build_manager(settings)

    app = FastAPI(title="LUME", version="0.1.0")
    app.state.settings = settings
    app.state.manager = manager

    app.add_exception_handler(AccessRedirect, access_redirect_handler)
    app.add_exception_handler(AuthError, auth_error_handler)

    @app.on_event("startup")
    async def restore_session():
        if settings.seed_admin:
            await _seed_admin(manager, settings)
        try:
            await manager.restore()
        except StoreUnavailable:
            logger.warning("Could not reach the identity store to restore the session")

    # -------------------------------------------------
    # ROOT + HEALTH
    # -------------------------------------------------
    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/")
    def login_view(manager: SessionManager = Depends(get_manager)):
        actor = manager.actor
        if actor is not None:
            return RedirectResponse(url=settings.targets.role_home(actor.role), status_code=status.HTTP_303_SEE_OTHER)
        return {"view": "login", "is_loading": manager.is_loading}

    # -------------------------------------------------
    # AUTH
    # -------------------------------------------------
    @app.post("/auth/login")
    async def login(payload: schemas.LoginIn, manager: SessionManager = Depends(get_manager)):
        actor = await manager.login(payload.email, payload.password)
        return {"actor": actor.model_dump(mode="json"), "redirect": settings.targets.role_home(actor.role)}

    @app.post("/auth/register", status_code=status.HTTP_201_CREATED)
    async def register(payload: dict, manager: SessionManager = Depends(get_manager)):
        actor = await manager.register(payload)
        return {"actor": actor.model_dump(mode="json"), "redirect": settings.targets.professional_home}

    @app.post("/auth/logout")
    async def logout(manager: SessionManager = Depends(get_manager)):
        await manager.logout()
        return {"ok": True, "redirect": settings.targets.login}

    @app.get("/auth/me", response_model=schemas.SessionStateOut)
    async def me(manager: SessionManager = Depends(get_manager)):
        await manager.refresh_subscription()
        return _session_state(manager)

    # -------------------------------------------------
    # VIEWS
    # -------------------------------------------------
    @app.get("/subscription-expired")
    def subscription_expired_view(manager: SessionManager = Depends(get_manager)):
        actor = manager.actor
        return {
            "view": "subscription-expired",
            "email": actor.email if actor else None,
        }

    @app.get("/professional")
    def professional_home(actor: Actor = Depends(require_roles(Role.PROFESSIONAL.value))):
        return {"view": "professional", "name": actor.name}

    @app.get("/professional/{section}")
    def professional_section(section: str, actor: Actor = Depends(require_roles(Role.PROFESSIONAL.value))):
        return {"view": f"professional/{section}", "name": actor.name}

    @app.get("/admin")
    def admin_home(actor: Actor = Depends(require_roles(Role.ADMIN.value))):
        return {"view": "admin", "name": actor.name}

    @app.get("/admin/professionals")
    def admin_professionals(actor: Actor = Depends(require_roles(Role.ADMIN.value))):
        return {"view": "admin/professionals", "name": actor.name}

    return app


async def _seed_admin(manager: SessionManager, settings: Settings) -> None:
    try:
        await manager.store.create_admin(settings.seed_admin_email, settings.seed_admin_password)
        logger.info("Seeded admin account %s", settings.seed_admin_email)
    except DuplicateEmail:
        pass
    except StoreUnavailable:
        logger.warning("Could not reach the identity store to seed the admin account")
