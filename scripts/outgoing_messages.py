#!/usr/bin/env python3
"""Lifecycle of outgoing (composed, unsent) messages.

An outgoing message moves COMPOSING -> OPEN or SAVED -> DELETED. Mail.app has
no patch operation for a compose object, so a replace deletes the old object
and creates a new one from the resolved field values. The two steps are not
atomic: if the process dies between them the old message is gone and no
replacement exists.

Outgoing message ids are only valid while Mail.app keeps running and live in
a different id space than saved messages, hence the two id types below.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from email.utils import parseaddr
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from jxa_bridge import BridgeError
from mail_errors import (
    InvalidArgumentError,
    MailError,
    MailNotFoundError,
    classify_error_text,
    raise_if_systemic,
)
from mail_logging import get_logger
from mailbox_resolver import format_path, require_mailbox
from message_query import RECIPIENT_KINDS, RECIPIENT_LABELS, read_recipient_addresses
from predicates import parse_optional_bool

logger = get_logger("outgoing")

KEEP = "__keep__"

OMIT_TRUTHY = "truthy"
OMIT_SENTINEL = "sentinel"
OMIT_POLICIES = (OMIT_TRUTHY, OMIT_SENTINEL)

RECIPIENT_CLASSES = {"to": "ToRecipient", "cc": "CcRecipient", "bcc": "BccRecipient"}
REPLACEABLE_FIELDS = ("subject", "content", "sender", "to_recipients", "cc_recipients", "bcc_recipients")
LOCAL_DRAFTS_LOCATION = "Local / On My Mac"

NO_RECIPIENTS_WARNING = (
    "No recipients could be added. Please add recipients manually in Mail.app before sending."
)
SOME_RECIPIENTS_WARNING = (
    "Some recipients could not be added ({added} of {requested} added). "
    "Please verify recipients in Mail.app."
)

REPLY_PREFIX = re.compile(r"^\s*re\s*:", re.IGNORECASE)

_OMITTED = object()


class OutgoingState(str, Enum):
    COMPOSING = "composing"
    OPEN = "open"
    SAVED = "saved"
    DELETED = "deleted"


@dataclass(frozen=True)
class OutgoingMessageId:
    """Session-scoped id of an OutgoingMessage; lost when Mail.app restarts."""

    value: int

    @classmethod
    def parse(cls, raw: Any) -> "OutgoingMessageId":
        return cls(_positive_id(raw, "Outgoing message ID"))


@dataclass(frozen=True)
class SavedMessageId:
    """Id of a message or draft stored in a mailbox."""

    value: int

    @classmethod
    def parse(cls, raw: Any, label: str = "Message ID") -> "SavedMessageId":
        return cls(_positive_id(raw, label))


@dataclass
class ComposeRequest:
    subject: str
    content: str
    to_recipients: List[str] = field(default_factory=list)
    cc_recipients: List[str] = field(default_factory=list)
    bcc_recipients: List[str] = field(default_factory=list)
    sender: Optional[str] = None
    opening_window: bool = False

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ComposeRequest":
        subject = _text(args.get("subject"), "subject").strip()
        if not subject:
            raise InvalidArgumentError("Subject is required and cannot be empty or whitespace-only")
        content = _text(args.get("content"), "content")
        if not content:
            raise InvalidArgumentError("Content is required")
        return cls(
            subject=subject,
            content=content,
            to_recipients=parse_recipient_list(args.get("to_recipients"), "to"),
            cc_recipients=parse_recipient_list(args.get("cc_recipients"), "cc"),
            bcc_recipients=parse_recipient_list(args.get("bcc_recipients"), "bcc"),
            sender=_text(args.get("sender"), "sender") or None,
            opening_window=bool(parse_optional_bool(args.get("opening_window"), "opening_window")),
        )

    def recipients(self) -> Dict[str, List[str]]:
        return {"to": self.to_recipients, "cc": self.cc_recipients, "bcc": self.bcc_recipients}


@dataclass
class RecipientReport:
    requested: int = 0
    added: Dict[str, List[str]] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    @property
    def total_added(self) -> int:
        return sum(len(addresses) for addresses in self.added.values())

    def warning(self) -> Optional[str]:
        if self.requested == 0 or self.total_added >= self.requested:
            return None
        if self.total_added == 0:
            return NO_RECIPIENTS_WARNING
        return SOME_RECIPIENTS_WARNING.format(added=self.total_added, requested=self.requested)


@dataclass
class ReplaceRequest:
    """Field updates for a replace; each field is a value, KEEP or omitted."""

    outgoing_id: OutgoingMessageId
    fields: Dict[str, Any]
    omit_policy: str = OMIT_TRUTHY
    opening_window: bool = False

    @classmethod
    def from_args(cls, args: Mapping[str, Any], omit_policy: Optional[str] = None) -> "ReplaceRequest":
        outgoing_id = OutgoingMessageId.parse(args.get("outgoing_id"))
        policy = parse_omit_policy(args.get("omit_policy") if omit_policy is None else omit_policy)

        if policy == OMIT_SENTINEL:
            missing = [name for name in REPLACEABLE_FIELDS if name not in args]
            if missing:
                raise InvalidArgumentError(
                    f"omit_policy 'sentinel' requires a value or \"{KEEP}\" for every field; "
                    f"missing: {', '.join(missing)}"
                )

        fields: Dict[str, Any] = {}
        for name in REPLACEABLE_FIELDS:
            raw = args[name] if name in args else _OMITTED
            if name.endswith("_recipients"):
                fields[name] = _replacement_recipients(raw, name.split("_")[0], policy)
            else:
                fields[name] = _replacement_text(raw, name, policy)

        return cls(
            outgoing_id=outgoing_id,
            fields=fields,
            omit_policy=policy,
            opening_window=bool(parse_optional_bool(args.get("opening_window"), "opening_window")),
        )

    def resolve(self, snapshot: Dict[str, Any]) -> ComposeRequest:
        """Three-way resolution of every field against the captured old values."""
        resolved: Dict[str, Any] = {}
        for name in REPLACEABLE_FIELDS:
            value = self.fields[name]
            if value is _OMITTED or value == KEEP:
                if name not in snapshot:
                    raise MailError(
                        f"Could not read the existing {name.replace('_', ' ')} of outgoing message "
                        f"{self.outgoing_id.value}; nothing was changed."
                    )
                value = snapshot[name]
            resolved[name] = value

        subject = str(resolved["subject"] or "").strip()
        if not subject:
            raise InvalidArgumentError("Subject is required and cannot be empty or whitespace-only")

        return ComposeRequest(
            subject=subject,
            content=str(resolved["content"] or ""),
            to_recipients=list(resolved["to_recipients"] or []),
            cc_recipients=list(resolved["cc_recipients"] or []),
            bcc_recipients=list(resolved["bcc_recipients"] or []),
            sender=resolved["sender"] or None,
            opening_window=self.opening_window,
        )


def parse_omit_policy(raw: Any) -> str:
    if raw is None or raw == "":
        return OMIT_TRUTHY
    if raw not in OMIT_POLICIES:
        raise InvalidArgumentError(f"omit_policy must be one of: {', '.join(OMIT_POLICIES)}")
    return raw


def parse_recipient_list(raw: Any, kind: str) -> List[str]:
    label = RECIPIENT_LABELS[kind]
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as err:
            raise InvalidArgumentError(f"Invalid {label} recipients JSON: {err}") from err
    else:
        decoded = raw
    if not isinstance(decoded, list):
        raise InvalidArgumentError(f"{label} recipients must be an array of email addresses")

    addresses: List[str] = []
    for address in decoded:
        if address is None:
            continue
        if not isinstance(address, str):
            raise InvalidArgumentError(f"{label} recipients must be strings, got {address!r}")
        addresses.append(address.strip())
    return addresses


def reply_subject(subject: Optional[str]) -> str:
    original = (subject or "").strip()
    if REPLY_PREFIX.match(original):
        return original
    return f"Re: {original}".strip()


def find_outgoing_message(app: Any, outgoing_id: OutgoingMessageId, not_found_message: Optional[str] = None) -> Any:
    matches = app.outgoing_messages.whose(id=outgoing_id.value)
    if not matches:
        raise MailNotFoundError(
            not_found_message
            or f"OutgoingMessage with ID {outgoing_id.value} not found. The message may have been "
            "sent, closed, or Mail.app may have been restarted."
        )
    return matches[0]


def add_recipients(message: Any, kind: str, addresses: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Append one recipient object per address; one rejection never stops the rest."""
    collection = message.elements(RECIPIENT_KINDS[kind])
    added: List[str] = []
    failures: List[str] = []
    for address in addresses:
        if not address:
            continue
        try:
            collection.push(RECIPIENT_CLASSES[kind], {"address": address})
        except BridgeError as err:
            raise_if_systemic(err)
            failures.append(address)
            logger.info("Error adding %s recipient %s: %s", RECIPIENT_LABELS[kind], address, err)
        else:
            added.append(address)
    return added, failures


def compose(app: Any, request: ComposeRequest) -> Dict[str, Any]:
    """Create an outgoing message, then save it or leave it open.

    Everything after the make call is cosmetic for the caller: read-back
    failures degrade the response instead of failing it.
    """
    properties: Dict[str, Any] = {"subject": request.subject, "visible": request.opening_window}
    if request.sender:
        properties["sender"] = request.sender

    message = app.make("outgoingMessage", with_properties=properties)
    state = OutgoingState.COMPOSING
    logger.debug("Composing outgoing message '%s'", request.subject)

    report = RecipientReport()
    pushed: Dict[str, List[str]] = {}
    for kind, addresses in request.recipients().items():
        report.requested += len([address for address in addresses if address])
        pushed[kind], failures = add_recipients(message, kind, addresses)
        report.failures.extend(failures)

    app.make("paragraph", with_data=request.content, at=message.specifier("content"))

    if request.opening_window:
        state = OutgoingState.OPEN
    else:
        message.save()
        state = OutgoingState.SAVED

    for kind in RECIPIENT_KINDS:
        read_back = _read_back(message, kind)
        report.added[kind] = pushed[kind] if read_back is None else read_back

    data: Dict[str, Any] = {
        "outgoing_id": _read_property(message, "id"),
        "subject": _read_property(message, "subject", request.subject),
        "sender": _read_property(message, "sender", request.sender),
        "to_recipients": report.added["to"],
        "cc_recipients": report.added["cc"],
        "bcc_recipients": report.added["bcc"],
        "state": state.value,
    }
    warning = report.warning()
    if warning:
        data["warning"] = warning
    return data


def create_outgoing_message(app: Any, request: ComposeRequest) -> Dict[str, Any]:
    data = compose(app, request)
    data["message"] = _outcome_message("Outgoing message created successfully", data)
    return data


def snapshot_outgoing(message: Any) -> Dict[str, Any]:
    """Current field values of an outgoing message; unreadable fields are left out."""
    snapshot: Dict[str, Any] = {}
    for name in ("subject", "content", "sender"):
        try:
            snapshot[name] = message.get(name)
        except BridgeError as err:
            raise_if_systemic(err)
            logger.info("Error reading existing %s: %s", name, err)

    for kind in RECIPIENT_KINDS:
        addresses = _read_back(message, kind)
        if addresses is not None:
            snapshot[f"{kind}_recipients"] = addresses
    return snapshot


def replace_outgoing_message(app: Any, request: ReplaceRequest) -> Dict[str, Any]:
    existing = find_outgoing_message(app, request.outgoing_id)
    resolved = request.resolve(snapshot_outgoing(existing))

    app.delete(existing)
    logger.info("Deleted outgoing message %s before recreating it", request.outgoing_id.value)

    try:
        data = compose(app, resolved)
    except BridgeError as err:
        raise MailError(
            f"Outgoing message {request.outgoing_id.value} was deleted but its replacement "
            f"could not be created: {err}",
            code=classify_error_text(str(err)),
        ) from err

    data["old_outgoing_id"] = request.outgoing_id.value
    data["message"] = _outcome_message(
        "OutgoingMessage replaced successfully (old message deleted, new message created "
        "with updated properties)",
        data,
        short="OutgoingMessage replaced successfully",
    )
    return data


def delete_outgoing_message(app: Any, outgoing_id: OutgoingMessageId) -> Dict[str, Any]:
    message = find_outgoing_message(
        app, outgoing_id, f"Outgoing message with ID {outgoing_id.value} not found."
    )
    subject = _read_property(message, "subject")
    app.delete(message)
    logger.info("Deleted outgoing message with ID %s.", outgoing_id.value)
    return {
        "deleted_id": outgoing_id.value,
        "subject": subject,
        "state": OutgoingState.DELETED.value,
        "message": "Outgoing message deleted successfully.",
    }


def find_draft(app: Any, draft_id: SavedMessageId, drafts_aliases: Sequence[str]) -> Tuple[Any, str]:
    """Search every account's drafts mailbox, then the local drafts mailboxes."""
    for account in app.accounts.all():
        try:
            matches = account.ref("draftsMailbox").elements("messages").whose(id=draft_id.value)
        except BridgeError as err:
            raise_if_systemic(err)
            logger.debug("Skipping account without a readable drafts mailbox: %s", err)
            continue
        if matches:
            account_name = _read_property(account, "name", "")
            logger.info("Found draft in account: %s", account_name)
            return matches[0], account_name

    try:
        local_mailboxes = app.mailboxes.whose_any("name", list(drafts_aliases))
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Checking local mailboxes failed: %s", err)
        local_mailboxes = []

    for mailbox in local_mailboxes:
        matches = mailbox.elements("messages").whose(id=draft_id.value)
        if matches:
            logger.info("Found draft in local mailbox: %s", _read_property(mailbox, "name"))
            return matches[0], LOCAL_DRAFTS_LOCATION

    raise MailNotFoundError(f"Draft with ID {draft_id.value} not found in any account.")


def delete_draft(app: Any, draft_id: SavedMessageId, drafts_aliases: Sequence[str]) -> Dict[str, Any]:
    draft, account_name = find_draft(app, draft_id, drafts_aliases)
    subject = _read_property(draft, "subject")
    app.delete(draft)
    logger.info("Deleted draft with ID %s.", draft_id.value)
    return {
        "draft_id": draft_id.value,
        "subject": subject,
        "account": account_name,
        "message": "Draft deleted successfully.",
    }


def reply_to_message(
    app: Any,
    account_name: str,
    path: Sequence[str],
    message_id: SavedMessageId,
    content: str,
    opening_window: bool = False,
) -> Dict[str, Any]:
    account, mailbox = require_mailbox(app, account_name, path)
    matches = mailbox.elements("messages").whose(id=message_id.value)
    if not matches:
        raise MailNotFoundError(
            f"Message with ID {message_id.value} not found in mailbox '{format_path(path)}'. "
            "The message may have been deleted or moved."
        )
    original = matches[0]

    original_sender = str(original.get("sender") or "")
    reply_address = parseaddr(original_sender)[1] or original_sender.strip()
    request = ComposeRequest(
        subject=reply_subject(original.get("subject")),
        content=content,
        to_recipients=[reply_address] if reply_address else [],
        cc_recipients=read_recipient_addresses(original, "cc"),
        sender=_account_sender(account),
        opening_window=opening_window,
    )

    data = compose(app, request)
    data["in_reply_to"] = message_id.value
    data["account"] = account_name
    data["mailbox_path"] = list(path)
    data["message"] = _outcome_message(
        "Reply opened for editing" if opening_window else "Reply saved to drafts successfully",
        data,
    )
    return data


def _account_sender(account: Any) -> Optional[str]:
    try:
        addresses = account.get("emailAddresses") or []
        full_name = account.get("fullName") or ""
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Could not read the account identity, Mail.app picks the sender: %s", err)
        return None
    if not addresses:
        return None
    return f"{full_name} <{addresses[0]}>" if full_name else addresses[0]


def _outcome_message(base: str, data: Dict[str, Any], short: Optional[str] = None) -> str:
    warning = data.get("warning")
    if not warning:
        return base
    prefix = short or base
    if warning == NO_RECIPIENTS_WARNING:
        return f"{prefix}, but recipients could not be added"
    return f"{prefix}, but some recipients could not be added"


def _read_back(message: Any, kind: str) -> Optional[List[str]]:
    try:
        addresses = message.elements(RECIPIENT_KINDS[kind]).values("address")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading %s recipients: %s", RECIPIENT_LABELS[kind], err)
        return None
    return [str(address) for address in addresses if address]


def _read_property(element: Any, name: str, default: Any = None) -> Any:
    try:
        return element.get(name)
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Error reading %s: %s", name, err)
        return default


def _replacement_text(raw: Any, name: str, policy: str) -> Any:
    if raw is _OMITTED or raw == KEEP:
        return raw
    if raw is None or raw == "":
        if policy == OMIT_TRUTHY:
            return _OMITTED
        if name == "subject":
            raise InvalidArgumentError(f"Subject cannot be cleared; pass \"{KEEP}\" to keep it")
        return ""
    text = _text(raw, name)
    if name == "subject":
        text = text.strip()
        if not text:
            if policy == OMIT_TRUTHY:
                return _OMITTED
            raise InvalidArgumentError("Subject is required and cannot be empty or whitespace-only")
    return text


def _replacement_recipients(raw: Any, kind: str, policy: str) -> Any:
    if raw is _OMITTED or raw == KEEP:
        return raw
    if (raw is None or raw == "") and policy == OMIT_TRUTHY:
        return _OMITTED
    return parse_recipient_list(raw, kind)


def _text(raw: Any, name: str) -> str:
    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise InvalidArgumentError(f"{name} must be a string")
    return raw


def _positive_id(raw: Any, label: str) -> int:
    message = f"{label} is required and must be a positive integer"
    if raw is None or isinstance(raw, bool):
        raise InvalidArgumentError(message)
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw.isdigit():
            raise InvalidArgumentError(message)
    try:
        value = int(raw)
    except (TypeError, ValueError) as err:
        raise InvalidArgumentError(message) from err
    if value < 1 or (isinstance(raw, float) and raw != value):
        raise InvalidArgumentError(message)
    return value
