from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mail_errors import InvalidArgumentError
from predicates import MessageFilter, matches, parse_mail_datetime


def make_bag(**overrides):
    bag = {
        "subject": "Invoice #42 for March",
        "sender": "Billing Team <billing@vendor.example>",
        "readStatus": False,
        "flaggedStatus": True,
        "dateReceived": "2024-03-15T09:30:00Z",
    }
    bag.update(overrides)
    return bag


def test_subject_and_sender_match_case_insensitive_substrings() -> None:
    message_filter = MessageFilter.from_args({"subject": "INVOICE", "sender": "vendor.EXAMPLE"})

    assert message_filter.matches(make_bag())
    assert not message_filter.matches(make_bag(subject="Receipt"))


def test_predicates_combine_with_and() -> None:
    message_filter = MessageFilter.from_args({"subject": "invoice", "read_status": True})

    assert not message_filter.matches(make_bag(readStatus=False))
    assert message_filter.matches(make_bag(readStatus=True))


def test_flagged_only_requires_flag() -> None:
    message_filter = MessageFilter.from_args({"flagged_only": "true"})

    assert message_filter.matches(make_bag(flaggedStatus=True))
    assert not message_filter.matches(make_bag(flaggedStatus=False))
    assert not message_filter.matches(make_bag(flaggedStatus=1))
    assert not message_filter.matches(make_bag(flaggedStatus="yes"))
    assert not message_filter.matches(make_bag(flaggedStatus=None))


def test_date_bounds_are_exclusive() -> None:
    message_filter = MessageFilter.from_args(
        {"date_after": "2024-03-15T09:30:00Z", "date_before": "2024-04-01T00:00:00Z"}
    )

    assert not message_filter.matches(make_bag(dateReceived="2024-03-15T09:30:00Z"))
    assert message_filter.matches(make_bag(dateReceived="2024-03-15T09:30:01Z"))
    assert not message_filter.matches(make_bag(dateReceived="2024-04-01T00:00:00Z"))


def test_missing_date_never_matches_a_date_bound() -> None:
    message_filter = MessageFilter.from_args({"date_after": "2024-01-01"})

    assert not message_filter.matches(make_bag(dateReceived=None))


def test_empty_filter_matches_everything_and_needs_no_properties() -> None:
    message_filter = MessageFilter.from_args({})

    assert message_filter.is_empty()
    assert message_filter.required_properties() == []
    assert message_filter.matches({})


def test_required_properties_follow_active_predicates() -> None:
    message_filter = MessageFilter.from_args({"sender": "bob", "date_before": "2024-01-01T00:00:00Z"})

    assert message_filter.required_properties() == ["sender", "dateReceived"]


def test_result_does_not_depend_on_predicate_order() -> None:
    message_filter = MessageFilter.from_args(
        {"subject": "invoice", "sender": "billing", "read_status": False, "flagged_only": True}
    )
    checks = message_filter.predicates()

    for bag in (make_bag(), make_bag(flaggedStatus=False), make_bag(sender="someone")):
        forward = all(check(bag) for _, check in checks)
        backward = all(check(bag) for _, check in reversed(checks))
        assert forward == backward == matches(bag, message_filter)


def test_malformed_date_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="Invalid date_after format"):
        MessageFilter.from_args({"date_after": "last tuesday"})


def test_non_boolean_read_status_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="read_status"):
        MessageFilter.from_args({"read_status": "maybe"})


def test_parse_mail_datetime_treats_naive_values_as_utc() -> None:
    parsed = parse_mail_datetime("2024-03-15T09:30:00")

    assert parsed == datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


def test_describe_reports_normalized_filters() -> None:
    message_filter = MessageFilter.from_args({"subject": "invoice", "date_after": "2024-03-15T10:30:00+01:00"})

    described = message_filter.describe()

    assert described["subject"] == "invoice"
    assert described["date_after"] == "2024-03-15T09:30:00Z"
    assert described["flagged_only"] is False
