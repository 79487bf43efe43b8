from __future__ import annotations

import pytest

from envelope import describe_error, failure, run_operation, success
from jxa_bridge import BridgeError, BridgeUnavailableError
from mail_errors import (
    MAIL_APP_NO_PERMISSIONS,
    MAIL_APP_NOT_RUNNING,
    UNKNOWN,
    MailNotFoundError,
    classify_error_text,
    raise_if_systemic,
)
from mail_logging import get_logger


@pytest.mark.parametrize(
    "text, code",
    [
        ("execution error: Not authorized to send Apple events to Mail. (-1743)", MAIL_APP_NO_PERMISSIONS),
        ("Error: Automation is not allowed for this process", MAIL_APP_NO_PERMISSIONS),
        ("Mail got an error: Application isn't running. (-600)", MAIL_APP_NOT_RUNNING),
        ("Can't get mailbox \"Inbox\". (-1728)", UNKNOWN),
        ("", UNKNOWN),
        (None, UNKNOWN),
    ],
)
def test_classify_error_text(text, code) -> None:
    assert classify_error_text(text) == code


def test_raise_if_systemic_only_reraises_classified_errors() -> None:
    raise_if_systemic(BridgeError("Can't get object. (-1728)"))

    with pytest.raises(BridgeError):
        raise_if_systemic(BridgeError("Not authorized to send Apple events to Mail. (-1743)"))


def test_success_with_warning_is_partial_failure() -> None:
    envelope = success({"outgoing_id": 3, "warning": "Some recipients could not be added (2 of 3 added)."})

    assert envelope["success"] is True
    assert envelope["errorCode"] == "PARTIAL_FAILURE"


def test_plain_success_has_no_error_fields() -> None:
    assert success({"count": 0}) == {"success": True, "data": {"count": 0}}


def test_failure_envelope_shape() -> None:
    assert failure("boom", "UNKNOWN", "line one") == {
        "success": False,
        "error": "boom",
        "errorCode": "UNKNOWN",
        "logs": "line one",
    }


def test_run_operation_collects_logs_and_keeps_mail_error_code() -> None:
    logger = get_logger("tests")

    def operation():
        logger.info("Looking for draft 42")
        logger.debug("not captured")
        raise MailNotFoundError("Draft with ID 42 not found in any account.")

    envelope = run_operation("delete_draft", operation)

    assert envelope["success"] is False
    assert envelope["errorCode"] == "NOT_FOUND"
    assert envelope["error"] == "Draft with ID 42 not found in any account."
    assert envelope["logs"].splitlines()[0] == "Looking for draft 42"
    assert "not captured" not in envelope["logs"]


def test_run_operation_classifies_bridge_errors() -> None:
    def operation():
        raise BridgeError("osascript execution failed: Not authorized to send Apple events to Mail. (-1743)", -1743)

    envelope = run_operation("list_accounts", operation)

    assert envelope["errorCode"] == MAIL_APP_NO_PERMISSIONS
    assert "grant automation permissions" in envelope["error"]


def test_run_operation_wraps_unexpected_errors() -> None:
    def operation():
        raise KeyError("subject")

    envelope = run_operation("find_messages", operation)

    assert envelope["success"] is False
    assert envelope["errorCode"] == UNKNOWN
    assert "KeyError" in envelope["error"]


def test_missing_osascript_reads_as_not_running() -> None:
    described = describe_error(BridgeUnavailableError("'osascript' was not found."))

    assert described["errorCode"] == MAIL_APP_NOT_RUNNING


def test_logs_do_not_leak_between_operations() -> None:
    logger = get_logger("tests")

    def first():
        logger.info("first operation")
        return {"ok": 1}

    def second():
        return {"ok": 2}

    assert run_operation("a", first)["logs"] == "first operation"
    assert "logs" not in run_operation("b", second)
