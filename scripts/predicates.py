#!/usr/bin/env python3
"""Compound message filters and their evaluation against one message."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from mail_errors import InvalidArgumentError

SUBJECT = "subject"
SENDER = "sender"
READ_STATUS = "readStatus"
FLAGGED_STATUS = "flaggedStatus"
DATE_RECEIVED = "dateReceived"


@dataclass(frozen=True)
class MessageFilter:
    subject: Optional[str] = None
    sender: Optional[str] = None
    read_status: Optional[bool] = None
    flagged_only: bool = False
    date_after: Optional[datetime] = None
    date_before: Optional[datetime] = None

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "MessageFilter":
        return cls(
            subject=_optional_text(args.get("subject"), "subject"),
            sender=_optional_text(args.get("sender"), "sender"),
            read_status=parse_optional_bool(args.get("read_status"), "read_status"),
            flagged_only=bool(parse_optional_bool(args.get("flagged_only"), "flagged_only")),
            date_after=_optional_date(args.get("date_after"), "date_after"),
            date_before=_optional_date(args.get("date_before"), "date_before"),
        )

    def is_empty(self) -> bool:
        return not self.required_properties()

    def required_properties(self) -> List[str]:
        """Property arrays worth fetching in bulk for the active predicates."""
        properties: List[str] = []
        if self.subject:
            properties.append(SUBJECT)
        if self.sender:
            properties.append(SENDER)
        if self.read_status is not None:
            properties.append(READ_STATUS)
        if self.flagged_only:
            properties.append(FLAGGED_STATUS)
        if self.date_after is not None or self.date_before is not None:
            properties.append(DATE_RECEIVED)
        return properties

    def predicates(self) -> List[Tuple[str, Callable[[Mapping[str, Any]], bool]]]:
        checks: List[Tuple[str, Callable[[Mapping[str, Any]], bool]]] = []
        if self.subject:
            needle = self.subject.lower()
            checks.append(("subject", lambda bag: _contains(bag.get(SUBJECT), needle)))
        if self.sender:
            needle = self.sender.lower()
            checks.append(("sender", lambda bag: _contains(bag.get(SENDER), needle)))
        if self.read_status is not None:
            expected = self.read_status
            checks.append(("read_status", lambda bag: bag.get(READ_STATUS) is expected))
        if self.flagged_only:
            checks.append(("flagged_only", lambda bag: bag.get(FLAGGED_STATUS) is True))
        if self.date_after is not None:
            after = self.date_after
            checks.append(("date_after", lambda bag: _compare_date(bag.get(DATE_RECEIVED), lambda d: d > after)))
        if self.date_before is not None:
            before = self.date_before
            checks.append(("date_before", lambda bag: _compare_date(bag.get(DATE_RECEIVED), lambda d: d < before)))
        return checks

    def matches(self, bag: Mapping[str, Any]) -> bool:
        return matches(bag, self)

    def describe(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "sender": self.sender,
            "read_status": self.read_status,
            "flagged_only": self.flagged_only,
            "date_after": iso_utc(self.date_after) if self.date_after else None,
            "date_before": iso_utc(self.date_before) if self.date_before else None,
        }


def matches(bag: Mapping[str, Any], message_filter: MessageFilter) -> bool:
    """True when every active predicate holds; stops at the first failing one."""
    return all(check(bag) for _, check in message_filter.predicates())


def parse_mail_datetime(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        normalized = str(raw).strip()
        if not normalized:
            return None
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(normalized)
        except ValueError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _contains(value: Any, needle: str) -> bool:
    if not value:
        return False
    return needle in str(value).lower()


def _compare_date(value: Any, comparison: Callable[[datetime], bool]) -> bool:
    received = parse_mail_datetime(value)
    if received is None:
        return False
    return comparison(received)


def _optional_text(raw: Any, name: str) -> Optional[str]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise InvalidArgumentError(f"{name} must be a string")
    return raw or None


def parse_optional_bool(raw: Any, name: str) -> Optional[bool]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
        if not normalized:
            return None
    raise InvalidArgumentError(f"{name} must be true or false")


def _optional_date(raw: Any, name: str) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    parsed = parse_mail_datetime(raw)
    if parsed is None:
        raise InvalidArgumentError(f"Invalid {name} format: '{raw}' (expected ISO 8601)")
    return parsed
