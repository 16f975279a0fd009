"""Structured logging helpers for pairing components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``code``           – The pairing code (first 3 chars kept)
- ``auth_type``      – ``signin`` / ``signup``
- ``correlation_id`` – Request correlation id set by the HTTP middleware

Usage
-----
>>> from stockpair.device_auth.log_utils import get_pairing_logger
>>> log = get_pairing_logger(
...     base_logger_name="stockpair.device_auth.service",
...     code="K7QX2MZ",
...     auth_type="signin",
... )
>>> log.info("Pairing approved")
INFO stockpair.device_auth.service code=K7Q auth_type=signin ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


def mask_code(code: str | None) -> str:
    """Return the loggable prefix of a pairing code."""
    if not code:
        return "-"
    return f"{code[:3]}****"


class _PairingLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted pairing context into log records."""

    extra_keys = ("code", "auth_type", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if k == "code" and extra and extra.get("code"):
                # never keep the full code – it is a live credential
                extra_clean[k] = str(extra["code"])[:3]
            elif extra and k in extra and extra[k] is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_pairing_logger(
    *,
    base_logger_name: str = "stockpair.device_auth",
    code: str | None = None,
    auth_type: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with pairing context."""
    logger = logging.getLogger(base_logger_name)
    return _PairingLoggerAdapter(
        logger,
        {
            "code": code,
            "auth_type": auth_type,
            "correlation_id": correlation_id,
        },
    )
