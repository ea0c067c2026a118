# accvault Configuration
#
# Settings are read from the environment (optionally seeded from a .env
# file via python-dotenv). The client-side KDF cost and the server-side
# password-hash cost are independent settings: the client derives once per
# unlock on user hardware, the server hashes on every login under a CPU
# budget. Never collapse them into one value.

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

ENV_PREFIX = "ACCVAULT_"

# OWASP 2023: 600k iterations for PBKDF2-SHA256
DEFAULT_CLIENT_KDF_ITERATIONS = 600_000
DEFAULT_SERVER_HASH_ITERATIONS = 10_000
DEFAULT_UNLOCK_WINDOW_SECONDS = 15 * 60
DEFAULT_SESSION_TTL_DAYS = 7
DEFAULT_RESET_TOKEN_TTL_MINUTES = 60


def _int_setting(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class VaultSettings:
    """Validated accvault settings."""

    db_path: Path = Path("data/accvault.db")
    audit_log_dir: Path = Path("./audit_logs")
    client_kdf_iterations: int = DEFAULT_CLIENT_KDF_ITERATIONS
    server_hash_iterations: int = DEFAULT_SERVER_HASH_ITERATIONS
    unlock_window_seconds: int = DEFAULT_UNLOCK_WINDOW_SECONDS
    session_ttl_days: int = DEFAULT_SESSION_TTL_DAYS
    reset_token_ttl_minutes: int = DEFAULT_RESET_TOKEN_TTL_MINUTES
    session_token_bytes: int = 32
    reset_token_bytes: int = 48
    app_base_url: Optional[str] = field(default=None)

    def __post_init__(self):
        if self.session_token_bytes < 16 or self.reset_token_bytes < 16:
            raise ValueError("Bearer tokens need at least 16 bytes of entropy")

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "VaultSettings":
        """Create settings from ``ACCVAULT_*`` environment variables.

        Args:
            env_file: Optional .env file loaded before reading (existing
                variables are not overridden).
            environ: Mapping to read instead of ``os.environ`` (tests).

        Raises:
            ValueError: If a numeric variable is malformed or out of range.
        """
        if environ is None:
            load_dotenv(dotenv_path=env_file, override=False)
            environ = os.environ

        base_url = environ.get(ENV_PREFIX + "APP_BASE_URL") or None
        return cls(
            db_path=Path(environ.get(ENV_PREFIX + "DB_PATH", "data/accvault.db")),
            audit_log_dir=Path(environ.get(ENV_PREFIX + "AUDIT_LOG_DIR", "./audit_logs")),
            client_kdf_iterations=_int_setting(
                environ, "CLIENT_KDF_ITERATIONS", DEFAULT_CLIENT_KDF_ITERATIONS
            ),
            server_hash_iterations=_int_setting(
                environ, "SERVER_HASH_ITERATIONS", DEFAULT_SERVER_HASH_ITERATIONS
            ),
            unlock_window_seconds=_int_setting(
                environ, "UNLOCK_WINDOW_SECONDS", DEFAULT_UNLOCK_WINDOW_SECONDS
            ),
            session_ttl_days=_int_setting(
                environ, "SESSION_TTL_DAYS", DEFAULT_SESSION_TTL_DAYS
            ),
            reset_token_ttl_minutes=_int_setting(
                environ, "RESET_TOKEN_TTL_MINUTES", DEFAULT_RESET_TOKEN_TTL_MINUTES
            ),
            app_base_url=base_url.rstrip("/") if base_url else None,
        )


# Global settings instance
_settings: Optional[VaultSettings] = None


def get_settings() -> VaultSettings:
    """Get global settings (loaded from the environment on first use)."""
    global _settings
    if _settings is None:
        _settings = VaultSettings.from_env()
    return _settings
