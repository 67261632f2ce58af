"""Runtime settings read from the environment (and an optional ``.env``)."""

from __future__ import annotations

import locale
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_BASE_URL = "http://localhost:3001"
DEFAULT_STATE_DIR = Path.home() / ".campus_market"
DEFAULT_PROFILE = "default"
DEFAULT_HTTP_TIMEOUT_S = 15.0
DEFAULT_EMAIL_DOMAIN = "utdallas.edu"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    state_dir: Path = DEFAULT_STATE_DIR
    profile: str = DEFAULT_PROFILE
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    email_domain: str = DEFAULT_EMAIL_DOMAIN
    log_level: str = "INFO"


def _timeout(raw: Optional[str]) -> float:
    if not raw:
        return DEFAULT_HTTP_TIMEOUT_S
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_HTTP_TIMEOUT_S
    return value if value > 0 else DEFAULT_HTTP_TIMEOUT_S


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings`; ``env`` defaults to ``os.environ`` after loading ``.env``."""

    if env is None:
        load_dotenv()
        env = os.environ
    return Settings(
        base_url=env.get("CAMPUS_MARKET_BASE_URL") or DEFAULT_BASE_URL,
        state_dir=Path(env.get("CAMPUS_MARKET_STATE_DIR") or DEFAULT_STATE_DIR).expanduser(),
        profile=env.get("CAMPUS_MARKET_PROFILE") or DEFAULT_PROFILE,
        http_timeout_s=_timeout(env.get("CAMPUS_MARKET_HTTP_TIMEOUT")),
        email_domain=env.get("CAMPUS_MARKET_EMAIL_DOMAIN") or DEFAULT_EMAIL_DOMAIN,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def resolve_state_path(settings: Settings) -> Path:
    """Return the per-profile state file, creating its private directory."""

    profile_dir = settings.state_dir / settings.profile
    profile_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    return profile_dir / "state.json"


def configure_collation() -> bool:
    """Adopt the user's collation locale; keep the C locale if it is unavailable."""

    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as exc:
        logging.getLogger(__name__).warning("Falling back to C collation: %s", exc)
        return False
    return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level.upper(), logging.INFO))
