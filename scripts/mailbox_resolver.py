#!/usr/bin/env python3
"""Account lookup and mailbox path resolution.

A mailbox path is the list of mailbox names below the account, e.g.
``["Inbox", "GitHub"]``. Resolution first descends the tree one segment at a
time; when a provider-specific hierarchy defeats that, every mailbox of the
account is enumerated and its path rebuilt from the parent chain.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jxa_bridge import BridgeError
from mail_errors import InvalidArgumentError, MailNotFoundError, raise_if_systemic
from mail_logging import get_logger

logger = get_logger("resolver")

MAX_PATH_DEPTH = 64
PATH_SEPARATOR = " > "


def parse_mailbox_path(raw: Any, allow_empty: bool = True) -> List[str]:
    if raw is None or raw == "":
        segments: List[Any] = []
    elif isinstance(raw, (list, tuple)):
        segments = list(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError as err:
                raise InvalidArgumentError(f"Invalid mailbox path JSON: {err}") from err
            if not isinstance(decoded, list):
                raise InvalidArgumentError("Mailbox path JSON must be an array of names")
            segments = decoded
        else:
            segments = [piece.strip() for piece in text.strip("/").split("/") if piece.strip()]
    else:
        raise InvalidArgumentError("Mailbox path must be an array of mailbox names")

    path: List[str] = []
    for segment in segments:
        if not isinstance(segment, str) or not segment:
            raise InvalidArgumentError("Mailbox path segments must be non-empty strings")
        path.append(segment)

    if not path and not allow_empty:
        raise InvalidArgumentError("Mailbox path must be a non-empty array")
    return path


def format_path(path: Sequence[str]) -> str:
    return PATH_SEPARATOR.join(path)


def find_account(app: Any, account_name: str) -> Any:
    if not account_name:
        raise InvalidArgumentError("Account name is required")

    account = app.accounts.named(account_name)
    try:
        actual_name = account.get("name")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Account lookup for '%s' failed: %s", account_name, err)
        actual_name = None

    if actual_name != account_name:
        raise MailNotFoundError(
            f'Account "{account_name}" not found. Please verify the account name is correct.'
        )
    return account


def resolve_mailbox(account: Any, path: Sequence[str], account_name: Optional[str] = None) -> Optional[Any]:
    """Return the mailbox at ``path`` below ``account``, or None when absent.

    An empty path is the account's root container, i.e. the account itself.
    """
    if not path:
        return account

    if account_name is None:
        account_name = account.get("name")

    found = descend(account, path, account_name)
    if found is not None:
        return found

    logger.info(
        "Direct lookup of '%s' failed in account '%s'; rebuilding paths from all mailboxes",
        format_path(path),
        account_name,
    )
    return reconstruct(account, path, account_name)


def require_mailbox(app: Any, account_name: str, path: Sequence[str]) -> Tuple[Any, Any]:
    account = find_account(app, account_name)
    mailbox = resolve_mailbox(account, path, account_name)
    if mailbox is None:
        raise MailNotFoundError(
            f"Mailbox path '{format_path(path)}' not found in account '{account_name}'."
        )
    return account, mailbox


def descend(account: Any, path: Sequence[str], account_name: str) -> Optional[Any]:
    current = account
    for depth, segment in enumerate(path):
        next_mailbox = _child_by_filter(current, segment, account_name if depth == 0 else None)
        if next_mailbox is None:
            next_mailbox = _child_by_name(current, segment, account_name if depth == 0 else None)
        if next_mailbox is None:
            logger.debug("No mailbox '%s' at depth %d", segment, depth)
            return None
        current = next_mailbox
    return current


def reconstruct(account: Any, path: Sequence[str], account_name: str) -> Optional[Any]:
    target = list(path)
    try:
        mailboxes = account.elements("mailboxes").all()
    except BridgeError as err:
        raise_if_systemic(err)
        logger.warning("Could not enumerate mailboxes of account '%s': %s", account_name, err)
        return None

    for mailbox in mailboxes:
        if mailbox_path(mailbox, account_name) == target:
            return mailbox
    return None


def mailbox_path(mailbox: Any, account_name: str) -> List[str]:
    """Names from below the account down to ``mailbox``, root first."""
    names: List[str] = []
    current = mailbox
    while len(names) < MAX_PATH_DEPTH:
        try:
            name = current.get("name")
        except BridgeError as err:
            raise_if_systemic(err)
            # The account's own container cannot be read; that is the top.
            break
        if not name or name == account_name:
            break
        names.insert(0, name)
        current = current.ref("container")
    return names


def list_account_mailboxes(account: Any, account_name: str, unread_only: bool = False) -> List[Dict[str, Any]]:
    collection = account.elements("mailboxes")
    names = collection.values("name")
    unread_counts = collection.values("unreadCount")

    rows: List[Dict[str, Any]] = []
    for index, name in enumerate(names):
        unread = unread_counts[index] if index < len(unread_counts) else None
        if unread_only and not (isinstance(unread, int) and unread > 0):
            continue
        path = mailbox_path(collection.at(index), account_name) or [name]
        rows.append({
            "name": name,
            "path": path,
            "account": account_name,
            "unread_count": int(unread or 0),
        })
        if unread_only:
            logger.info("Found %s unread in: '%s'", unread, format_path(path))
    return rows


def _child_by_filter(parent: Any, segment: str, top_level_of: Optional[str]) -> Optional[Any]:
    try:
        candidates = parent.elements("mailboxes").whose(name=segment)
    except BridgeError as err:
        raise_if_systemic(err)
        logger.debug("Filtered lookup of '%s' failed: %s", segment, err)
        return None

    for candidate in candidates:
        if top_level_of is None or _is_top_level(candidate, top_level_of):
            return candidate
    return None


def _child_by_name(parent: Any, segment: str, top_level_of: Optional[str]) -> Optional[Any]:
    candidate = parent.elements("mailboxes").named(segment)
    try:
        if candidate.get("name") != segment:
            return None
    except BridgeError as err:
        raise_if_systemic(err)
        logger.debug("Name lookup of '%s' failed: %s", segment, err)
        return None

    if top_level_of is not None and not _is_top_level(candidate, top_level_of):
        return None
    return candidate


def _is_top_level(mailbox: Any, account_name: str) -> bool:
    # An account's mailbox collection is flat, so "direct child" needs checking.
    try:
        parent_name = mailbox.ref("container").get("name")
    except BridgeError as err:
        raise_if_systemic(err)
        return True
    return parent_name == account_name
