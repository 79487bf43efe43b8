#!/usr/bin/env python3
"""Message queries over a resolved mailbox.

Only the property arrays an active predicate needs are fetched in bulk; the
full per-message summary is read afterwards for the first ``limit`` matches,
one message at a time, so one unreadable message never fails the query.
Each summarized message is addressed by its id, not its position, because
the mailbox can change between round-trips. Permission and not-running
failures are never absorbed into a partial result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from jxa_bridge import BridgeError
from mail_config import DEFAULT_MAX_QUERY_LIMIT, DEFAULT_QUERY_LIMIT
from mail_errors import InvalidArgumentError, MailNotFoundError, raise_if_systemic
from mail_logging import get_logger
from mailbox_resolver import format_path, mailbox_path
from predicates import MessageFilter, iso_utc, parse_mail_datetime

logger = get_logger("query")

CONTENT_PREVIEW_CHARS = 100
MAX_SELECTED_LIMIT = 100
RECIPIENT_KINDS = {
    "to": "toRecipients",
    "cc": "ccRecipients",
    "bcc": "bccRecipients",
}
RECIPIENT_LABELS = {"to": "To", "cc": "CC", "bcc": "BCC"}


@dataclass
class QueryResult:
    matches: List[Dict[str, Any]] = field(default_factory=list)
    total_matches: int = 0
    skipped: int = 0


def validate_limit(
    raw: Any,
    maximum: int = DEFAULT_MAX_QUERY_LIMIT,
    default: int = DEFAULT_QUERY_LIMIT,
    name: str = "Limit",
) -> int:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InvalidArgumentError(f"{name} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as err:
        raise InvalidArgumentError(f"{name} must be an integer, got '{raw}'") from err
    if isinstance(raw, float) and raw != value:
        raise InvalidArgumentError(f"{name} must be an integer, got '{raw}'")
    if value < 1 or value > maximum:
        raise InvalidArgumentError(f"{name} must be between 1 and {maximum}")
    return value


def matching_indices(messages: Any, message_filter: MessageFilter) -> List[int]:
    """Indices of matching messages in mailbox order."""
    columns: Dict[str, List[Any]] = {}
    for prop in message_filter.required_properties():
        columns[prop] = messages.values(prop)

    if not columns:
        return list(range(messages.count()))

    lengths = {len(values) for values in columns.values()}
    total = min(lengths)
    if len(lengths) > 1:
        logger.warning("Property arrays changed size during the scan; checking the first %d messages", total)

    indices: List[int] = []
    for index in range(total):
        bag = {prop: values[index] for prop, values in columns.items()}
        if message_filter.matches(bag):
            indices.append(index)
    return indices


def query_messages(
    mailbox: Any,
    message_filter: MessageFilter,
    limit: int,
    account_name: str,
    fallback_path: Sequence[str] = (),
) -> QueryResult:
    messages = mailbox.elements("messages")
    indices = matching_indices(messages, message_filter)
    logger.info("Found %d matching messages", len(indices))

    result = QueryResult(total_matches=len(indices))
    for index in indices[:limit]:
        try:
            result.matches.append(
                summarize_message(pin_message(messages, index), account_name, fallback_path)
            )
        except BridgeError as err:
            raise_if_systemic(err)
            result.skipped += 1
            logger.warning("Error reading message %d: %s", index, err)
    return result


def pin_message(messages: Any, index: int) -> Any:
    """Address the message at ``index`` by its id so later reads cannot drift to a neighbour."""
    return messages.by_id(messages.at(index).get("id"))


def summarize_message(message: Any, account_name: str, fallback_path: Sequence[str] = ()) -> Dict[str, Any]:
    message_id = message.get("id")
    content = _read_content(message, message_id)
    to_count = _recipient_count(message, "to")
    cc_count = _recipient_count(message, "cc")

    path = list(fallback_path)
    try:
        path = mailbox_path(message.ref("mailbox"), account_name) or path
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading mailbox path for message %s: %s", message_id, err)

    return {
        "id": message_id,
        "subject": message.get("subject"),
        "sender": message.get("sender"),
        "date_received": _iso(message.get("dateReceived")),
        "date_sent": _iso(message.get("dateSent")),
        "read_status": message.get("readStatus"),
        "flagged_status": message.get("flaggedStatus"),
        "message_size": message.get("messageSize"),
        "content_preview": preview(content),
        "content_length": len(content),
        "to_count": to_count,
        "cc_count": cc_count,
        "total_recipients": to_count + cc_count,
        "mailbox_path": path,
        "account": account_name,
    }


def get_message_content(mailbox: Any, message_id: int, account_name: str, path: Sequence[str]) -> Dict[str, Any]:
    candidates = mailbox.elements("messages").whose(id=message_id)
    if not candidates:
        raise MailNotFoundError(
            f"Message with ID {message_id} not found in mailbox '{format_path(path)}'. "
            "The message may have been deleted or moved."
        )

    message = candidates[0]
    content = _read_content(message, message_id)
    return {
        "id": message_id,
        "subject": message.get("subject"),
        "sender": message.get("sender"),
        "date_received": _iso(message.get("dateReceived")),
        "date_sent": _iso(message.get("dateSent")),
        "read_status": message.get("readStatus"),
        "flagged_status": message.get("flaggedStatus"),
        "content": content,
        "content_length": len(content),
        "to_recipients": read_recipient_addresses(message, "to"),
        "cc_recipients": read_recipient_addresses(message, "cc"),
        "bcc_recipients": read_recipient_addresses(message, "bcc"),
        "mailbox_path": list(path),
        "account": account_name,
    }


def list_drafts(app: Any, account: Any, account_name: str, limit: int) -> Dict[str, Any]:
    try:
        drafts_mailbox = account.ref("draftsMailbox")
        messages = drafts_mailbox.elements("messages")
        total_drafts = messages.count()
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Account '%s' has no drafts mailbox of its own (%s); using the shared one", account_name, err)
        drafts_mailbox = app.drafts_mailbox()
        messages = drafts_mailbox.elements("messages")
        total_drafts = messages.count()

    drafts: List[Dict[str, Any]] = []
    for index in range(min(total_drafts, limit)):
        try:
            drafts.append(_summarize_draft(pin_message(messages, index), account_name))
        except BridgeError as err:
            raise_if_systemic(err)
            logger.warning("Error reading draft %d: %s", index, err)

    return {
        "drafts": drafts,
        "count": len(drafts),
        "total_drafts": total_drafts,
        "limit": limit,
        "has_more": total_drafts > limit,
    }


def get_selected_messages(app: Any, limit: int, start_at: int) -> Dict[str, Any]:
    viewers = app.message_viewers.all()
    if not viewers:
        raise MailNotFoundError("No Mail viewer windows are open")

    selected = viewers[0].elements("selectedMessages")
    selected_count = selected.count()

    messages: List[Dict[str, Any]] = []
    for index in range(start_at, min(start_at + limit, selected_count)):
        try:
            message = pin_message(selected, index)
            mailbox = message.ref("mailbox")
            messages.append({
                "id": message.get("id"),
                "subject": message.get("subject"),
                "sender": message.get("sender"),
                "date_received": _iso(message.get("dateReceived")),
                "date_sent": _iso(message.get("dateSent")),
                "read_status": message.get("readStatus"),
                "flagged_status": message.get("flaggedStatus"),
                "junk_mail_status": message.get("junkMailStatus"),
                "mailbox": mailbox.get("name"),
                "account": mailbox.ref("account").get("name"),
            })
        except BridgeError as err:
            raise_if_systemic(err)
            logger.warning("Error reading selected message %d: %s", index, err)

    return {
        "selected_messages_count": selected_count,
        "start_at": start_at,
        "count": len(messages),
        "messages": messages,
    }


def read_recipient_addresses(message: Any, kind: str) -> List[str]:
    addresses: List[str] = []
    try:
        recipients = message.elements(RECIPIENT_KINDS[kind]).values("address")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading %s recipients: %s", RECIPIENT_LABELS[kind], err)
        return addresses

    for address in recipients:
        if address:
            addresses.append(str(address))
    return addresses


def preview(content: str) -> str:
    if len(content) > CONTENT_PREVIEW_CHARS:
        return content[:CONTENT_PREVIEW_CHARS] + "..."
    return content


def _summarize_draft(message: Any, account_name: str) -> Dict[str, Any]:
    draft_id = message.get("id")
    content = _read_content(message, draft_id)
    to_recipients = read_recipient_addresses(message, "to")
    cc_recipients = read_recipient_addresses(message, "cc")
    bcc_recipients = read_recipient_addresses(message, "bcc")

    mailbox_name = "Drafts"
    try:
        mailbox_name = message.ref("mailbox").get("name")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading mailbox name: %s", err)

    return {
        "draft_id": draft_id,
        "subject": message.get("subject"),
        "sender": message.get("sender"),
        "date_received": _iso(message.get("dateReceived")),
        "date_sent": _iso(message.get("dateSent")),
        "content_preview": preview(content),
        "content_length": len(content),
        "to_recipients": to_recipients,
        "cc_recipients": cc_recipients,
        "bcc_recipients": bcc_recipients,
        "to_count": len(to_recipients),
        "cc_count": len(cc_recipients),
        "bcc_count": len(bcc_recipients),
        "total_recipients": len(to_recipients) + len(cc_recipients) + len(bcc_recipients),
        "mailbox": mailbox_name,
        "account": account_name,
    }


def _read_content(message: Any, message_id: Any) -> str:
    try:
        return str(message.get("content") or "")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading content for message %s: %s", message_id, err)
        return ""


def _recipient_count(message: Any, kind: str) -> int:
    try:
        return message.elements(RECIPIENT_KINDS[kind]).count()
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading %s recipients count: %s", RECIPIENT_LABELS[kind], err)
        return 0


def _iso(raw: Any) -> Optional[str]:
    parsed = parse_mail_datetime(raw)
    return iso_utc(parsed) if parsed else None
