"""
Structured logging helpers for migration workflows.
"""

from __future__ import annotations

import json
import logging
from typing import Any

_REDACTED_FIELDS = frozenset({"password", "cookies", "token"})


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.

    Credential-bearing fields are masked before serialization.
    """

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event}
    for key, value in fields.items():
        payload[key] = "***" if key in _REDACTED_FIELDS and value is not None else value
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
