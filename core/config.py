"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PatronAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. ils_api_key -> ILS_API_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
ils/, or cache/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("patronauth.config")

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except ILS_API_KEY has a working default. Tests set
    ILS_API_KEY (or DEBUG=true) in the environment and need no .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    language: str = "en"
    json_pretty_print: bool = False

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    # Administrative switch. When False the auth endpoint answers 423.
    login_enabled: bool = True
    # strptime format of the expiry date the ILS client writes to the cache.
    display_date_format: str = "%Y-%m-%d"
    auth_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    granted_permissions: list[str] = ["access.api.User.Auth"]
    # Empty list means every client address is allowed.
    api_allowed_networks: list[str] = []
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # ILS (Alma REST API)
    # ------------------------------------------------------------------

    ils_base_url: str = "https://api-eu.hosted.exlibrisgroup.com/almaws/v1"
    ils_api_key: str = ""
    ils_timeout: int = 10

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    cache_db_path: Path = _ROOT / "cache" / "patronauth_cache.db"
    cache_ttl: int = 60 * 60
    patron_db_url: str = f"sqlite:///{_ROOT / 'auth' / 'patronauth_patrons.db'}"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_ils(self) -> "Settings":
        """Reject settings that would make every request fail at runtime.

        A non-positive timeout would disable the ILS timeout entirely, and a
        date format without any strptime directive can never match a real
        expiry date (every account would silently count as not expired).

        Development mode (DEBUG=true): a missing ILS_API_KEY only logs a
            warning, so the app can start without Alma access.

        Production mode (DEBUG=false or not set): refuse to start without
            ILS_API_KEY. Alma would reject every login, and each patron
            would be told their credentials are invalid.
        """
        if self.ils_timeout <= 0:
            raise ValueError("ILS_TIMEOUT must be a positive number of seconds.")
        if "%" not in self.display_date_format:
            raise ValueError("DISPLAY_DATE_FORMAT must be a strptime format such as %Y-%m-%d.")
        if not self.ils_api_key:
            if self.debug:
                logger.warning("ILS_API_KEY is not set -- ILS requests will be rejected by the server.")
            else:
                raise ValueError(
                    "ILS_API_KEY is required in production mode. "
                    "Set ILS_API_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
