from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from mail_config import MailConfig
from tests.fake_mail import FakeElement, FakeMailApp


def make_config(**overrides: Any) -> MailConfig:
    config = MailConfig(app_name="Mail", osascript="osascript", timeout_seconds=5.0)
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_account(
    app: FakeMailApp,
    name: str = "Work",
    *,
    enabled: bool = True,
    email_addresses: Optional[List[str]] = None,
    full_name: str = "Jane Doe",
    with_drafts: bool = True,
) -> FakeElement:
    account = app.add_account(
        {
            "name": name,
            "enabled": enabled,
            "emailAddresses": ["jane@work.example"] if email_addresses is None else email_addresses,
            "fullName": full_name,
        }
    )
    if with_drafts:
        account.refs["draftsMailbox"] = make_mailbox(account, "Drafts")
    return account


def make_mailbox(parent: FakeElement, name: str, *, unread: int = 0) -> FakeElement:
    mailbox = FakeElement(parent.app, "mailbox", {"name": name, "unreadCount": unread}, parent=parent)
    parent.children.setdefault("mailboxes", []).append(mailbox)
    return mailbox


def make_message(
    mailbox: FakeElement,
    *,
    subject: str = "Hello",
    sender: str = "Alice Example <alice@example.test>",
    date_received: str = "2024-03-01T10:00:00Z",
    date_sent: Optional[str] = None,
    read: bool = False,
    flagged: bool = False,
    content: str = "Message body",
    to: Sequence[str] = ("jane@work.example",),
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
    message_id: Optional[int] = None,
) -> FakeElement:
    app = mailbox.app
    message = FakeElement(
        app,
        "message",
        {
            "id": message_id if message_id is not None else app.next_message_id(),
            "subject": subject,
            "sender": sender,
            "dateReceived": date_received,
            "dateSent": date_sent or date_received,
            "readStatus": read,
            "flaggedStatus": flagged,
            "junkMailStatus": False,
            "messageSize": len(content),
            "content": content,
        },
        parent=mailbox,
    )
    for collection, addresses in (("toRecipients", to), ("ccRecipients", cc), ("bccRecipients", bcc)):
        message.children[collection] = [
            FakeElement(app, "recipient", {"address": address}, parent=message) for address in addresses
        ]
    mailbox.children.setdefault("messages", []).append(message)
    return message


def make_outgoing(
    app: FakeMailApp,
    *,
    subject: str = "Quarterly numbers",
    content: str = "Draft body",
    sender: str = "Jane Doe <jane@work.example>",
    to: Sequence[str] = ("bob@example.test",),
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
) -> FakeElement:
    message = app.make("outgoingMessage", with_properties={"subject": subject, "sender": sender, "visible": False})
    assert message is not None
    message.props["content"] = content
    for collection, addresses in (("toRecipients", to), ("ccRecipients", cc), ("bccRecipients", bcc)):
        message.children[collection] = [
            FakeElement(app, "recipient", {"address": address}, parent=message) for address in addresses
        ]
    app.made.clear()
    return message


def make_work_mailbox_tree(app: FakeMailApp) -> Dict[str, FakeElement]:
    """Work account: Inbox > {GitHub, Receipts > 2024}, Archive, Drafts."""
    account = make_account(app, "Work")
    inbox = make_mailbox(account, "Inbox", unread=3)
    github = make_mailbox(inbox, "GitHub", unread=2)
    receipts = make_mailbox(inbox, "Receipts")
    year = make_mailbox(receipts, "2024", unread=1)
    archive = make_mailbox(account, "Archive")
    return {
        "account": account,
        "inbox": inbox,
        "github": github,
        "receipts": receipts,
        "year": year,
        "archive": archive,
        "drafts": account.refs["draftsMailbox"],
    }


def recipient_addresses(message: FakeElement, collection: str) -> List[str]:
    return [recipient.props["address"] for recipient in message.children.get(collection, [])]
