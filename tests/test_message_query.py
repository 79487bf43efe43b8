from __future__ import annotations

import pytest

from jxa_bridge import BridgeError
from mail_errors import InvalidArgumentError, MailNotFoundError
from mail_logging import OperationLogCapture
from message_query import (
    get_message_content,
    get_selected_messages,
    list_drafts,
    preview,
    query_messages,
    validate_limit,
)
from predicates import MessageFilter
from tests.fake_mail import FakeMailApp
from tests.helpers import make_message, make_work_mailbox_tree


def make_invoice_mailbox(app: FakeMailApp):
    tree = make_work_mailbox_tree(app)
    inbox = tree["inbox"]
    for index in range(500):
        subject = f"Invoice {index}" if index % 20 == 0 or index in (3, 7, 11) else f"Status update {index}"
        make_message(inbox, subject=subject.upper() if index == 3 else subject)
    return tree


def test_query_counts_all_matches_but_returns_limit() -> None:
    app = FakeMailApp()
    tree = make_invoice_mailbox(app)

    result = query_messages(tree["inbox"], MessageFilter(subject="invoice"), 10, "Work", ["Inbox"])

    assert result.total_matches == 28
    assert len(result.matches) == 10
    assert all("invoice" in message["subject"].lower() for message in result.matches)


def test_twenty_three_matches_out_of_five_hundred() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    for index in range(500):
        make_message(tree["inbox"], subject="Your INVOICE is ready" if index < 23 else f"Newsletter {index}")

    result = query_messages(tree["inbox"], MessageFilter(subject="invoice"), 10, "Work", ["Inbox"])

    assert result.total_matches == 23
    assert len(result.matches) == 10


@pytest.mark.parametrize("limit", [1, 10, 28, 50, 1000])
def test_total_matches_does_not_depend_on_limit(limit: int) -> None:
    app = FakeMailApp()
    tree = make_invoice_mailbox(app)

    result = query_messages(tree["inbox"], MessageFilter(subject="invoice"), limit, "Work", ["Inbox"])

    assert result.total_matches == 28
    assert len(result.matches) == min(28, limit)


def test_unfiltered_query_keeps_mailbox_order() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    created = [make_message(tree["github"], subject=f"PR {index}").props["id"] for index in range(7)]

    result = query_messages(tree["github"], MessageFilter(), 50, "Work", ["Inbox", "GitHub"])

    assert [message["id"] for message in result.matches] == created
    assert app.bulk_reads == []


def test_only_active_filter_columns_are_fetched() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    make_message(tree["inbox"], subject="invoice")

    query_messages(tree["inbox"], MessageFilter(subject="invoice"), 5, "Work", ["Inbox"])

    assert app.bulk_reads == ["subject"]


def test_summary_contains_preview_and_recipient_counts() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    make_message(tree["github"], content="x" * 150, to=("a@example.test", "b@example.test"), cc=("c@example.test",))

    summary = query_messages(tree["github"], MessageFilter(), 5, "Work", ["Inbox", "GitHub"]).matches[0]

    assert summary["content_preview"] == "x" * 100 + "..."
    assert summary["content_length"] == 150
    assert (summary["to_count"], summary["cc_count"], summary["total_recipients"]) == (2, 1, 3)
    assert summary["mailbox_path"] == ["Inbox", "GitHub"]
    assert summary["date_received"] == "2024-03-01T10:00:00Z"


def test_unreadable_content_degrades_to_empty_preview() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    message = make_message(tree["inbox"])
    message.unreadable.add("content")

    with OperationLogCapture() as capture:
        result = query_messages(tree["inbox"], MessageFilter(), 5, "Work", ["Inbox"])

    assert result.matches[0]["content_preview"] == ""
    assert "Error reading content" in capture.text()


def test_unreadable_message_is_skipped_not_fatal() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    broken = make_message(tree["inbox"], subject="first")
    make_message(tree["inbox"], subject="second")
    broken.unreadable.add("readStatus")

    result = query_messages(tree["inbox"], MessageFilter(), 5, "Work", ["Inbox"])

    assert [message["subject"] for message in result.matches] == ["second"]
    assert result.skipped == 1
    assert result.total_matches == 2


def test_summary_stays_on_one_message_when_mail_arrives() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    inbox = tree["inbox"]
    invoice = make_message(inbox, subject="Invoice March", sender="billing@vendor.example")
    arrived = []

    def deliver(prop: str) -> None:
        if prop == "id" and not arrived:
            arrived.append(make_message(inbox, subject="Newsletter", sender="news@example.test"))
            inbox.children["messages"].insert(0, inbox.children["messages"].pop())

    invoice.on_read = deliver

    result = query_messages(inbox, MessageFilter(subject="invoice"), 5, "Work", ["Inbox"])

    assert arrived
    summary = result.matches[0]
    assert summary["id"] == invoice.props["id"]
    assert (summary["subject"], summary["sender"]) == ("Invoice March", "billing@vendor.example")


def test_permission_loss_mid_scan_is_raised_not_skipped() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    make_message(tree["inbox"], subject="first")
    denied = make_message(tree["inbox"], subject="second")
    make_message(tree["inbox"], subject="third")
    denied.read_error = BridgeError("Not authorized to send Apple events to Mail. (-1743)", error_number=-1743)

    with pytest.raises(BridgeError, match="-1743"):
        query_messages(tree["inbox"], MessageFilter(), 5, "Work", ["Inbox"])


def test_mail_quitting_while_listing_drafts_is_raised() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    draft = make_message(tree["drafts"], subject="Draft")
    draft.read_error = BridgeError("Error: Application isn't running. (-600)", error_number=-600)

    with pytest.raises(BridgeError, match="-600"):
        list_drafts(app, tree["account"], "Work", 10)


@pytest.mark.parametrize("raw", [0, -1, 1001, "abc", True, 2.5])
def test_validate_limit_rejects_out_of_range(raw) -> None:
    with pytest.raises(InvalidArgumentError):
        validate_limit(raw, maximum=1000)


def test_validate_limit_accepts_strings_and_defaults() -> None:
    assert validate_limit("10") == 10
    assert validate_limit(None) == 50
    assert validate_limit(1000, maximum=1000) == 1000


def test_get_message_content_returns_full_body_and_recipients() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    message = make_message(tree["github"], content="Full text", cc=("c@example.test",), bcc=("d@example.test",))

    content = get_message_content(tree["github"], message.props["id"], "Work", ["Inbox", "GitHub"])

    assert content["content"] == "Full text"
    assert content["cc_recipients"] == ["c@example.test"]
    assert content["bcc_recipients"] == ["d@example.test"]


def test_get_message_content_reports_missing_id() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)

    with pytest.raises(MailNotFoundError, match="Message with ID 77 not found in mailbox 'Inbox > GitHub'"):
        get_message_content(tree["github"], 77, "Work", ["Inbox", "GitHub"])


def test_list_drafts_reports_total_and_has_more() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    for index in range(3):
        make_message(tree["drafts"], subject=f"Draft {index}", to=("x@example.test",))

    drafts = list_drafts(app, tree["account"], "Work", 2)

    assert drafts["count"] == 2
    assert drafts["total_drafts"] == 3
    assert drafts["has_more"] is True
    assert drafts["drafts"][0]["to_recipients"] == ["x@example.test"]
    assert drafts["drafts"][0]["mailbox"] == "Drafts"


def test_list_drafts_falls_back_to_shared_drafts_mailbox() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    del tree["account"].refs["draftsMailbox"]
    shared = app.add_local_mailbox("Drafts")
    make_message(shared, subject="Local draft")

    drafts = list_drafts(app, tree["account"], "Work", 10)

    assert [draft["subject"] for draft in drafts["drafts"]] == ["Local draft"]


def test_selected_messages_require_a_viewer() -> None:
    app = FakeMailApp()

    with pytest.raises(MailNotFoundError, match="No Mail viewer windows are open"):
        get_selected_messages(app, 10, 0)


def test_selected_messages_are_paged() -> None:
    app = FakeMailApp()
    tree = make_work_mailbox_tree(app)
    selected = [make_message(tree["github"], subject=f"Selected {index}") for index in range(5)]
    app.add_viewer(selected)

    page = get_selected_messages(app, 2, 3)

    assert page["selected_messages_count"] == 5
    assert [message["subject"] for message in page["messages"]] == ["Selected 3", "Selected 4"]
    assert page["messages"][0]["mailbox"] == "GitHub"
    assert page["messages"][0]["account"] == "Work"


def test_preview_keeps_short_content() -> None:
    assert preview("short") == "short"
