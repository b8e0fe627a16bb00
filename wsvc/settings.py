"""
wsvc sync server settings

Environment-based configuration for ``wsvc serve``.  Every field can be set
with a ``WSVC_``-prefixed environment variable (``WSVC_PORT=9000``) or in a
``.env`` file next to the process.
"""
import pathlib
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def app_version() -> str:
    """Return the installed wsvc version."""
    try:
        return version("wsvc")
    except PackageNotFoundError:
        return "0.0.0-unknown"


class ServerSettings(BaseSettings):
    """Settings for the sync server loaded from environment."""

    # Repository served to clients (bare or non-bare)
    repo: pathlib.Path = pathlib.Path(".")

    host: str = "0.0.0.0"
    port: int = 9999

    # Credentials required in the upgrade handshake; unset means open server
    account: Optional[str] = None
    password: Optional[str] = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="WSVC_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> ServerSettings:
    """Get cached settings instance."""
    return ServerSettings()
