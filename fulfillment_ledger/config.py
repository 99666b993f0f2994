from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .constants import CACHE_DB_FILE_NAME, DATA_DIR

BASE_DIR = Path(__file__).resolve().parent
DATA_PATH = Path(os.environ.get("BACKOFFICE_DATA_DIR") or (BASE_DIR.parent / DATA_DIR))
CACHE_DB_PATH = DATA_PATH / CACHE_DB_FILE_NAME

DEFAULT_HTTP_TIMEOUT = 15.0
DEFAULT_CACHE_TTL = 600


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from None


@dataclass(frozen=True)
class ApiSettings:
    """Connection settings for the remote back-office API."""

    base_url: str
    company: str
    user_uuid: str | None = None
    timeout: float = DEFAULT_HTTP_TIMEOUT
    cache_ttl: int = DEFAULT_CACHE_TTL

    @classmethod
    def from_env(cls) -> "ApiSettings":
        """
        Build settings from BACKOFFICE_* environment variables.
        Base URL and company are required; the rest have defaults.
        """
        base_url = (os.environ.get("BACKOFFICE_API_BASE_URL") or "").strip()
        company = (os.environ.get("BACKOFFICE_COMPANY") or "").strip()
        if not base_url:
            raise ValueError("BACKOFFICE_API_BASE_URL is not defined.")
        if not company:
            raise ValueError("BACKOFFICE_COMPANY is not defined.")
        if not base_url.endswith("/"):
            base_url += "/"
        return cls(
            base_url=base_url,
            company=company,
            user_uuid=(os.environ.get("BACKOFFICE_USER_UUID") or "").strip() or None,
            timeout=_float_env("BACKOFFICE_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            cache_ttl=int(_float_env("BACKOFFICE_CACHE_TTL", DEFAULT_CACHE_TTL)),
        )

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}{self.company}/{endpoint.lstrip('/')}"
