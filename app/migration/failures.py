"""
Failure taxonomy shared by the runner, retry coordinator and orchestrator.
"""

from __future__ import annotations


class MigrationSetupError(Exception):
    """Raised for batch-level problems detected before any unit starts."""


class FailureReason:
    BOT_CHALLENGE = "bot_challenge"
    INVALID_CREDENTIALS = "invalid_credentials"
    VALIDATION_REJECTED = "validation_rejected"
    ASSET_MISSING = "asset_missing"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UI_NOT_READY = "ui_not_ready"
    HTTP_ERROR = "http_error"
    CANCELLED = "cancelled"
    UNEXPECTED_ERROR = "unexpected_error"


_MESSAGES = {
    FailureReason.BOT_CHALLENGE: "The destination showed a bot challenge. Complete it manually, then retry.",
    FailureReason.INVALID_CREDENTIALS: "The destination rejected the account credentials.",
    FailureReason.VALIDATION_REJECTED: "The destination rejected the product details.",
    FailureReason.ASSET_MISSING: "The product file could not be found on disk.",
    FailureReason.TIMEOUT: "The destination did not respond in time.",
    FailureReason.NETWORK_ERROR: "The destination could not be reached.",
    FailureReason.UI_NOT_READY: "The destination page was not ready for input.",
    FailureReason.HTTP_ERROR: "The automation endpoint returned an error response.",
    FailureReason.CANCELLED: "The migration was cancelled before this product finished.",
    FailureReason.UNEXPECTED_ERROR: "An unexpected error interrupted this product.",
}


def describe_failure(reason: str | None) -> str:
    """
    Return the user-facing message for a failure reason code.
    """

    if reason is None:
        return ""
    return _MESSAGES.get(reason, _MESSAGES[FailureReason.UNEXPECTED_ERROR])
