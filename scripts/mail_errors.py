#!/usr/bin/env python3
"""Error taxonomy for the apple-mail skill.

Mail.app reports permission problems and a stopped application only as free
text, so classification of bridge failures is heuristic: a small pattern
table maps error text to codes. It may misclassify; treat the resulting code
as a hint.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Tuple

MAIL_APP_NOT_RUNNING = "MAIL_APP_NOT_RUNNING"
MAIL_APP_NO_PERMISSIONS = "MAIL_APP_NO_PERMISSIONS"
NOT_FOUND = "NOT_FOUND"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
PARTIAL_FAILURE = "PARTIAL_FAILURE"
UNKNOWN = "UNKNOWN"

ERROR_CODES = (
    MAIL_APP_NOT_RUNNING,
    MAIL_APP_NO_PERMISSIONS,
    NOT_FOUND,
    INVALID_ARGUMENT,
    PARTIAL_FAILURE,
    UNKNOWN,
)

ERROR_TEXT_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\(-1743\)|\b-1743\b"), MAIL_APP_NO_PERMISSIONS),
    (re.compile(r"not authori[sz]ed to send apple events", re.IGNORECASE), MAIL_APP_NO_PERMISSIONS),
    (re.compile(r"automation is not allowed", re.IGNORECASE), MAIL_APP_NO_PERMISSIONS),
    (re.compile(r"\(-600\)|\b-600\b"), MAIL_APP_NOT_RUNNING),
    (re.compile(r"application isn.t running", re.IGNORECASE), MAIL_APP_NOT_RUNNING),
]

NOT_RUNNING_MESSAGE = "Mail.app is not running. Please start Mail.app and try again."
NO_PERMISSIONS_MESSAGE = (
    "Permission denied to access Mail.app. Please grant automation permissions in "
    "System Settings > Privacy & Security > Automation."
)


class MailError(RuntimeError):
    """Base class for failures reported through the result envelope."""

    code = UNKNOWN

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class MailAppNotRunningError(MailError):
    code = MAIL_APP_NOT_RUNNING

    def __init__(self, message: str = NOT_RUNNING_MESSAGE):
        super().__init__(message)


class MailPermissionError(MailError):
    code = MAIL_APP_NO_PERMISSIONS

    def __init__(self, message: str = NO_PERMISSIONS_MESSAGE):
        super().__init__(message)


class MailNotFoundError(MailError):
    """Raised when an account, mailbox, message, draft or outgoing message is absent."""

    code = NOT_FOUND


class InvalidArgumentError(MailError, ValueError):
    """Raised for missing or malformed arguments, detected before any mutation."""

    code = INVALID_ARGUMENT


def classify_error_text(text: Optional[str]) -> str:
    if not text:
        return UNKNOWN
    for pattern, code in ERROR_TEXT_PATTERNS:
        if pattern.search(text):
            return code
    return UNKNOWN


def raise_if_systemic(err: Exception) -> None:
    """Re-raise failures that are about the application, not the looked-up object."""
    if classify_error_text(str(err)) != UNKNOWN:
        raise err
