#!/usr/bin/env python3
"""Host-visible operations.

Every operation takes one argument mapping (positional calls are adapted into
the same mapping first), validates it, checks that Mail.app is running and
then does its work. ``execute`` wraps the outcome in the result envelope.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from envelope import failure, run_operation
from jxa_bridge import BridgeError, connect
from mail_config import MailConfig
from mail_errors import INVALID_ARGUMENT, InvalidArgumentError, MailAppNotRunningError, raise_if_systemic
from mail_logging import get_logger
from mailbox_resolver import find_account, list_account_mailboxes, parse_mailbox_path, require_mailbox
from message_query import (
    MAX_SELECTED_LIMIT,
    get_message_content as read_message_content,
    get_selected_messages as read_selected_messages,
    list_drafts as read_drafts,
    query_messages,
    validate_limit,
)
from outgoing_messages import (
    ComposeRequest,
    OutgoingMessageId,
    ReplaceRequest,
    SavedMessageId,
    create_outgoing_message as create_outgoing,
    delete_draft as remove_draft,
    delete_outgoing_message as remove_outgoing,
    replace_outgoing_message as replace_outgoing,
    reply_to_message as compose_reply,
)
from predicates import MessageFilter, parse_optional_bool

logger = get_logger("operations")

DEFAULT_SELECTED_LIMIT = 10

Handler = Callable[[Any, Dict[str, Any], MailConfig], Dict[str, Any]]


@dataclass(frozen=True)
class Operation:
    name: str
    handler: Handler
    positional: Tuple[str, ...]
    description: str


OPERATIONS: Dict[str, Operation] = {}


def operation(name: str, positional: Sequence[str] = (), description: str = "") -> Callable[[Handler], Handler]:
    def register(handler: Handler) -> Handler:
        OPERATIONS[name] = Operation(name, handler, tuple(positional), description)
        return handler

    return register


def adapt_arguments(
    name: str,
    positional: Sequence[str] = (),
    args_json: Optional[str] = None,
) -> Dict[str, Any]:
    """Turn either calling convention into the argument mapping."""
    spec = OPERATIONS[name]
    if args_json is not None:
        if positional:
            raise InvalidArgumentError("Pass either positional arguments or --args-json, not both")
        try:
            decoded = json.loads(args_json)
        except json.JSONDecodeError as err:
            raise InvalidArgumentError(f"Failed to parse input arguments JSON: {err}") from err
        if not isinstance(decoded, dict):
            raise InvalidArgumentError("Input arguments JSON must be an object")
        return decoded

    if len(positional) > len(spec.positional):
        raise InvalidArgumentError(
            f"{name} takes at most {len(spec.positional)} positional arguments "
            f"({', '.join(spec.positional) or 'none'}), got {len(positional)}"
        )
    return dict(zip(spec.positional, positional))


def execute(
    name: str,
    args: Optional[Mapping[str, Any]] = None,
    app: Any = None,
    config: Optional[MailConfig] = None,
) -> Dict[str, Any]:
    spec = OPERATIONS.get(name)
    if spec is None:
        return failure(
            f"Unknown operation '{name}'. Available: {', '.join(sorted(OPERATIONS))}",
            INVALID_ARGUMENT,
        )

    def call() -> Dict[str, Any]:
        settings = config or MailConfig.from_env()
        target = app
        if target is None:
            target = connect(settings.app_name, settings.osascript, settings.timeout_seconds)
        return spec.handler(target, dict(args or {}), settings)

    return run_operation(name, call)


def execute_cli(
    name: str,
    positional: Sequence[str] = (),
    args_json: Optional[str] = None,
    app: Any = None,
    config: Optional[MailConfig] = None,
) -> Dict[str, Any]:
    if name not in OPERATIONS:
        return execute(name)
    try:
        args = adapt_arguments(name, positional, args_json)
    except InvalidArgumentError as err:
        return failure(str(err), err.code)
    return execute(name, args, app=app, config=config)


def require_running(app: Any) -> None:
    try:
        running = app.running()
    except BridgeError as err:
        raise_if_systemic(err)
        raise MailAppNotRunningError(f"Could not reach Mail.app: {err}") from err
    if not running:
        raise MailAppNotRunningError()


def require_text(args: Mapping[str, Any], key: str, message: str) -> str:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidArgumentError(message)
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{key} must be a string")
    return value


@operation("status", description="Check that Mail.app is running and reachable")
def status(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    try:
        running = app.running()
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Running check failed: %s", err)
        running = False

    if not running:
        return {"running": False, "app_name": config.app_name, "account_count": 0, "version": None}
    return {
        "running": True,
        "app_name": config.app_name,
        "account_count": app.accounts.count(),
        "version": app.version(),
    }


@operation("list_accounts", ("enabled_only",), "List mail accounts")
def list_accounts(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    enabled_only = bool(parse_optional_bool(args.get("enabled_only"), "enabled_only"))
    require_running(app)

    names = app.accounts.values("name")
    enabled_flags = app.accounts.values("enabled")

    accounts: List[Dict[str, Any]] = []
    for index, name in enumerate(names):
        enabled = bool(enabled_flags[index]) if index < len(enabled_flags) else False
        if enabled_only and not enabled:
            continue
        account = app.accounts.at(index)
        accounts.append({
            "name": name,
            "enabled": enabled,
            "email_addresses": _account_addresses(account, name),
            "mailbox_count": _mailbox_count(account, name),
        })
    return {"accounts": accounts, "count": len(accounts)}


@operation("list_mailboxes", ("account",), "List every mailbox of an account with its path")
def list_mailboxes(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    require_running(app)

    account = find_account(app, account_name)
    mailboxes = list_account_mailboxes(account, account_name)
    return {"account": account_name, "mailboxes": mailboxes, "count": len(mailboxes)}


@operation("find_unread_mailboxes", ("account",), "List mailboxes that hold unread messages")
def find_unread_mailboxes(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    require_running(app)

    account = find_account(app, account_name)
    mailboxes = list_account_mailboxes(account, account_name, unread_only=True)
    return {
        "account": account_name,
        "mailboxes": mailboxes,
        "count": len(mailboxes),
        "total_unread": sum(row["unread_count"] for row in mailboxes),
    }


@operation("find_messages", ("account", "mailbox_path", "limit"), "Find messages matching filters")
def find_messages(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    path = parse_mailbox_path(args.get("mailbox_path"), allow_empty=False)
    limit = validate_limit(args.get("limit"), maximum=config.max_query_limit)
    message_filter = MessageFilter.from_args(args)
    require_running(app)

    _, mailbox = require_mailbox(app, account_name, path)
    result = query_messages(mailbox, message_filter, limit, account_name, path)
    data = {
        "messages": result.matches,
        "count": len(result.matches),
        "total_matches": result.total_matches,
        "limit": limit,
        "has_more": result.total_matches > limit,
        "filters_applied": message_filter.describe(),
        "account": account_name,
        "mailbox_path": path,
    }
    if result.skipped:
        data["skipped"] = result.skipped
    return data


@operation("get_message_content", ("account", "mailbox_path", "message_id"), "Read one message in full")
def get_message_content(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    path = parse_mailbox_path(args.get("mailbox_path"), allow_empty=False)
    message_id = SavedMessageId.parse(args.get("message_id"))
    require_running(app)

    _, mailbox = require_mailbox(app, account_name, path)
    return read_message_content(mailbox, message_id.value, account_name, path)


@operation("get_selected_messages", ("limit", "start_at"), "Messages selected in the frontmost viewer")
def get_selected_messages(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    limit = validate_limit(args.get("limit"), maximum=MAX_SELECTED_LIMIT, default=DEFAULT_SELECTED_LIMIT)
    start_at = _non_negative_int(args.get("start_at"), "start_at")
    require_running(app)

    return read_selected_messages(app, limit, start_at)


@operation("list_drafts", ("account", "limit"), "List draft messages of an account")
def list_drafts(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    limit = validate_limit(args.get("limit"), maximum=config.max_query_limit)
    require_running(app)

    account = find_account(app, account_name)
    data = read_drafts(app, account, account_name, limit)
    data["account"] = account_name
    return data


@operation(
    "create_outgoing_message",
    ("subject", "content", "to_recipients", "cc_recipients", "bcc_recipients", "sender", "opening_window"),
    "Compose a new outgoing message",
)
def create_outgoing_message(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    request = ComposeRequest.from_args(args)
    require_running(app)
    return create_outgoing(app, request)


@operation(
    "replace_outgoing_message",
    (
        "outgoing_id",
        "subject",
        "content",
        "to_recipients",
        "cc_recipients",
        "bcc_recipients",
        "sender",
        "opening_window",
    ),
    "Replace an outgoing message, keeping fields that are not given",
)
def replace_outgoing_message(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    request = ReplaceRequest.from_args(args)
    require_running(app)
    return replace_outgoing(app, request)


@operation("delete_outgoing_message", ("outgoing_id",), "Delete an open or unsaved outgoing message")
def delete_outgoing_message(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    outgoing_id = OutgoingMessageId.parse(args.get("outgoing_id"))
    require_running(app)
    return remove_outgoing(app, outgoing_id)


@operation("delete_draft", ("draft_id",), "Delete a saved draft")
def delete_draft(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    draft_id = SavedMessageId.parse(args.get("draft_id"), "Draft ID")
    require_running(app)
    return remove_draft(app, draft_id, config.drafts_aliases)


@operation(
    "reply_to_message",
    ("account", "mailbox_path", "message_id", "content", "opening_window"),
    "Create a reply to a saved message",
)
def reply_to_message(app: Any, args: Dict[str, Any], config: MailConfig) -> Dict[str, Any]:
    account_name = require_text(args, "account", "Account name is required")
    path = parse_mailbox_path(args.get("mailbox_path"), allow_empty=False)
    message_id = SavedMessageId.parse(args.get("message_id"))
    content = require_text(args, "content", "Reply content is required")
    opening_window = bool(parse_optional_bool(args.get("opening_window"), "opening_window"))
    require_running(app)

    return compose_reply(app, account_name, path, message_id, content, opening_window)


def _account_addresses(account: Any, account_name: str) -> List[str]:
    try:
        addresses = account.get("emailAddresses")
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Account '%s' has no email addresses property: %s", account_name, err)
        return []
    return [str(address) for address in addresses or []]


def _mailbox_count(account: Any, account_name: str) -> int:
    try:
        return account.elements("mailboxes").count()
    except BridgeError as err:
        raise_if_systemic(err)
        logger.info("Could not count mailboxes of '%s': %s", account_name, err)
        return 0


def _non_negative_int(raw: Any, name: str) -> int:
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool):
        raise InvalidArgumentError(f"{name} must be a non-negative integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as err:
        raise InvalidArgumentError(f"{name} must be a non-negative integer") from err
    if value < 0:
        raise InvalidArgumentError(f"{name} must be a non-negative integer")
    return value
