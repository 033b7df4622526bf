# lume/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from lume.domain import Role


def _env(name: str) -> Optional[str]:
    v = os.getenv(name)
    return v.strip() if v else None


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


# -------------------------------------------------------------------
# Route targets used by the access guard
# -------------------------------------------------------------------
@dataclass(frozen=True)
class Targets:
    login: str = "/"
    subscription_expired: str = "/subscription-expired"
    professional_home: str = "/professional"
    admin_home: str = "/admin"

    def role_home(self, role: str) -> str:
        # Total over Role; anything else is a programming error and raises.
        homes = {
            Role.PROFESSIONAL: self.professional_home,
            Role.ADMIN: self.admin_home,
        }
        return homes[Role(role)]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./lume.db"
    secret_key: str = "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440

    # Local session snapshot: <state_dir>/session-<installation_id>.json
    state_dir: Path = Path(".lume")
    installation_id: str = "default"

    trial_days: int = 3
    renewal_days: int = 30

    log_level: str = "INFO"

    seed_admin: bool = False
    seed_admin_email: str = "admin@lume.app"
    seed_admin_password: str = "AdminPassword123!"

    targets: Targets = field(default_factory=Targets)

    @property
    def snapshot_path(self) -> Path:
        return self.state_dir / f"session-{self.installation_id}.json"


def load_settings(*, dotenv: bool = True) -> Settings:
    """
    Build Settings from the environment.

    A .env file (searched from the working directory upwards) is loaded first
    unless dotenv=False. Malformed numbers fall back to the defaults.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    defaults = Settings()
    return Settings(
        database_url=_env("LUME_DATABASE_URL") or defaults.database_url,
        secret_key=_env("SECRET_KEY") or defaults.secret_key,
        access_token_expire_minutes=_env_int(
            "ACCESS_TOKEN_EXPIRE_MINUTES", defaults.access_token_expire_minutes
        ),
        state_dir=Path(_env("LUME_STATE_DIR") or defaults.state_dir),
        installation_id=_env("LUME_INSTALLATION_ID") or defaults.installation_id,
        trial_days=_env_int("LUME_TRIAL_DAYS", defaults.trial_days),
        renewal_days=_env_int("LUME_RENEWAL_DAYS", defaults.renewal_days),
        log_level=(_env("LUME_LOG_LEVEL") or defaults.log_level).upper(),
        seed_admin=_env_bool("SEED_ADMIN"),
        seed_admin_email=_env("SEED_ADMIN_EMAIL") or defaults.seed_admin_email,
        seed_admin_password=_env("SEED_ADMIN_PASSWORD") or defaults.seed_admin_password,
    )
