#!/usr/bin/env python3
"""Runtime configuration for the apple-mail skill.

Values come from the environment; a local .env file is loaded first when
present so development setups do not need exported variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from mail_errors import InvalidArgumentError

DEFAULT_APP_NAME = "Mail"
DEFAULT_OSASCRIPT = "osascript"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_QUERY_LIMIT = 1000
DEFAULT_QUERY_LIMIT = 50

# Localized names Mail.app uses for the drafts mailbox of local ("On My Mac")
# and some IMAP accounts. Extend with APPLE_MAIL_DRAFTS_ALIASES.
DRAFTS_MAILBOX_ALIASES: Tuple[str, ...] = (
    "Drafts",
    "Entwürfe",
    "Brouillons",
    "Borradores",
    "Bozze",
    "Concepten",
    "Rascunhos",
    "Utkast",
    "Kladder",
    "Черновики",
    "下書き",
    "草稿",
)

TRUE_VALUES = {"1", "true", "yes", "y", "on"}
FALSE_VALUES = {"0", "false", "no", "n", "off", ""}


@dataclass
class MailConfig:
    app_name: str = DEFAULT_APP_NAME
    osascript: str = DEFAULT_OSASCRIPT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_query_limit: int = DEFAULT_MAX_QUERY_LIMIT
    drafts_aliases: List[str] = field(default_factory=lambda: list(DRAFTS_MAILBOX_ALIASES))
    debug: bool = False
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "MailConfig":
        if load_dotenv_file:
            load_dotenv(find_dotenv(usecwd=True))

        app_name = os.environ.get("APPLE_MAIL_APP_NAME", DEFAULT_APP_NAME).strip() or DEFAULT_APP_NAME
        osascript = os.environ.get("APPLE_MAIL_OSASCRIPT", DEFAULT_OSASCRIPT).strip() or DEFAULT_OSASCRIPT
        timeout_seconds = _parse_positive_float(
            os.environ.get("APPLE_MAIL_TIMEOUT_SECONDS"),
            "APPLE_MAIL_TIMEOUT_SECONDS",
            DEFAULT_TIMEOUT_SECONDS,
        )
        max_query_limit = _parse_positive_int(
            os.environ.get("APPLE_MAIL_MAX_QUERY_LIMIT"),
            "APPLE_MAIL_MAX_QUERY_LIMIT",
            DEFAULT_MAX_QUERY_LIMIT,
        )
        debug = _parse_bool(os.environ.get("APPLE_MAIL_DEBUG"), "APPLE_MAIL_DEBUG")
        raw_log_file = os.environ.get("APPLE_MAIL_LOG_FILE", "").strip()

        return cls(
            app_name=app_name,
            osascript=osascript,
            timeout_seconds=timeout_seconds,
            max_query_limit=max_query_limit,
            drafts_aliases=merge_drafts_aliases(os.environ.get("APPLE_MAIL_DRAFTS_ALIASES")),
            debug=debug,
            log_file=Path(raw_log_file).expanduser() if raw_log_file else None,
        )


def merge_drafts_aliases(raw: Optional[str]) -> List[str]:
    aliases = list(DRAFTS_MAILBOX_ALIASES)
    seen = set(aliases)
    for chunk in (raw or "").split(","):
        alias = chunk.strip()
        if not alias or alias in seen:
            continue
        seen.add(alias)
        aliases.append(alias)
    return aliases


def _parse_positive_float(raw: Optional[str], name: str, default: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as err:
        raise InvalidArgumentError(f"{name} must be a number, got '{raw}'") from err
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be greater than 0")
    return value


def _parse_positive_int(raw: Optional[str], name: str, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as err:
        raise InvalidArgumentError(f"{name} must be an integer, got '{raw}'") from err
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be greater than 0")
    return value


def _parse_bool(raw: Optional[str], name: str) -> bool:
    normalized = (raw or "").strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise InvalidArgumentError(f"{name} must be one of: true, false")
