"""Settings resolved from environment variables."""

import logging
import os
import secrets
from dataclasses import dataclass
from typing import Final, Tuple

logger = logging.getLogger("stockpair.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_STORE_KINDS: Final[Tuple[str, ...]] = ("memory", "disk", "sqlite")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    """
    Read ``name`` as an integer.

    Unset or blank values fall back to ``default``; anything unparsable or
    below ``minimum`` is a configuration error and raises ``ValueError``.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class PairingSettings:
    """
    Runtime configuration for the pairing server.

    Built once at startup by :meth:`from_env`; the server and tests may also
    construct it directly.
    """

    code_length: int = 7
    code_ttl_seconds: int = 15 * 60
    poll_interval_ms: int = 3_000
    sweep_interval_seconds: int = 5 * 60
    max_generation_attempts: int = 5
    activate_url: str = "http://localhost:3001/activate"
    store: str = "memory"
    store_path: str | None = None
    jwt_secret: str = ""
    jwt_expires_in_seconds: int = 7 * 24 * 3600
    host: str = "0.0.0.0"
    port: int = 8787
    log_level: str = "INFO"
    sweeper_enabled: bool = True

    @classmethod
    def from_env(cls) -> "PairingSettings":
        """Create settings from ``PAIRING_*``, ``JWT_*`` and ``STOCKPAIR_*`` variables."""
        store = (os.getenv("PAIRING_STORE") or "memory").strip().lower()
        if store not in _STORE_KINDS:
            raise ValueError(f"PAIRING_STORE must be one of {_STORE_KINDS}, got {store!r}")

        jwt_secret = os.getenv("JWT_SECRET") or ""
        if not jwt_secret:
            # Ephemeral secret – suitable for single-instance dev setups only
            jwt_secret = secrets.token_urlsafe(48)
            logger.warning(
                "Environment variable JWT_SECRET not set – generated transient secret. "
                "Issued tokens will stop verifying after process restart."
            )

        sweeper_raw = os.getenv("PAIRING_SWEEPER_ENABLED")
        return cls(
            code_length=_int_env("PAIRING_CODE_LENGTH", cls.code_length, minimum=4),
            code_ttl_seconds=_int_env("PAIRING_CODE_TTL_SECONDS", cls.code_ttl_seconds),
            poll_interval_ms=_int_env("PAIRING_POLL_INTERVAL_MS", cls.poll_interval_ms),
            sweep_interval_seconds=_int_env(
                "PAIRING_SWEEP_INTERVAL_SECONDS", cls.sweep_interval_seconds
            ),
            max_generation_attempts=_int_env(
                "PAIRING_MAX_GENERATION_ATTEMPTS", cls.max_generation_attempts
            ),
            activate_url=(os.getenv("PAIRING_ACTIVATE_URL") or cls.activate_url).strip(),
            store=store,
            store_path=os.getenv("PAIRING_STORE_PATH") or None,
            jwt_secret=jwt_secret,
            jwt_expires_in_seconds=_int_env(
                "JWT_EXPIRES_IN_SECONDS", cls.jwt_expires_in_seconds
            ),
            host=os.getenv("STOCKPAIR_HOST") or cls.host,
            port=_int_env("STOCKPAIR_PORT", cls.port),
            log_level=(os.getenv("STOCKPAIR_LOG_LEVEL") or cls.log_level).strip().upper(),
            sweeper_enabled=True if sweeper_raw is None else _truthy(sweeper_raw),
        )
