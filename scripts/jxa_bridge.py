#!/usr/bin/env python3
"""JavaScript for Automation (JXA) bridge to Mail.app.

Objects in the target application are addressed by lazy object specifiers:
an ``Element`` or ``Elements`` only holds the JXA expression that reaches it
(``Mail.accounts.byName("Work").mailboxes.byName("Inbox")``). Reading a
property evaluates that expression inside ``osascript`` and returns the
JSON-encoded value, one blocking round-trip per call.
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess
from typing import Any, Dict, List, Optional

from mail_logging import get_logger

logger = get_logger("bridge")

SCRIPT_TEMPLATE = """function run(argv) {
  const Mail = Application(argv[0]);
  const value = (function () {
%s
  })();
  return JSON.stringify({ value: value === undefined ? null : value });
}
"""

# Properties that hold a list of references rather than an element class.
ARRAY_PROPERTIES = {"selectedMessages"}

# Kinds created with make() that can be found again by id afterwards.
MAKE_COLLECTIONS = {"outgoingMessage": "outgoingMessages"}

ERROR_NUMBER_PATTERN = re.compile(r"\((-?\d+)\)\s*$")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class BridgeError(RuntimeError):
    """Raised when osascript fails or the target application reports an error."""

    def __init__(self, message: str, error_number: Optional[int] = None):
        super().__init__(message)
        self.error_number = error_number


class BridgeUnavailableError(BridgeError):
    """Raised when the osascript executable cannot be found."""


class JXABridge:
    def __init__(
        self,
        app_name: str = "Mail",
        osascript: str = "osascript",
        timeout_seconds: float = 30.0,
    ) -> None:
        self.app_name = app_name
        self.osascript = osascript
        self.timeout_seconds = timeout_seconds

    def evaluate(self, expression: str) -> Any:
        return self.run_body(f"    return ({expression});")

    def execute(self, statement: str) -> None:
        self.run_body(f"    {statement};\n    return null;")

    def run_body(self, body: str) -> Any:
        script = SCRIPT_TEMPLATE % body
        executable = self._resolve_executable()
        logger.debug("JXA round-trip: %s", body.strip())

        try:
            completed = subprocess.run(
                [executable, "-l", "JavaScript", "-e", script, self.app_name],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as err:
            raise BridgeError(
                f"osascript timed out after {self.timeout_seconds:g}s; "
                "Mail.app may still be completing the request"
            ) from err

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise BridgeError(
                f"osascript execution failed: {detail or f'exit status {completed.returncode}'}",
                error_number=_extract_error_number(detail),
            )

        output = (completed.stdout or "").strip()
        if not output:
            raise BridgeError("osascript returned empty output (expected JSON)")

        try:
            payload = json.loads(output)
        except json.JSONDecodeError as err:
            raise BridgeError(f"Failed to parse osascript JSON output: {output[:500]}") from err

        if not isinstance(payload, dict) or "value" not in payload:
            raise BridgeError(f"osascript output missing 'value' field: {output[:500]}")
        return payload["value"]

    def _resolve_executable(self) -> str:
        resolved = shutil.which(self.osascript)
        if not resolved:
            raise BridgeUnavailableError(
                f"'{self.osascript}' was not found. The apple-mail skill only runs on macOS."
            )
        return resolved


class Element:
    """Lazy reference to one object inside the target application."""

    def __init__(self, bridge: JXABridge, expression: str) -> None:
        self.bridge = bridge
        self.expression = expression

    def get(self, prop: str) -> Any:
        return self.bridge.evaluate(f"{self.expression}.{_identifier(prop)}()")

    def ref(self, prop: str) -> "Element":
        return Element(self.bridge, f"{self.expression}.{_identifier(prop)}()")

    def specifier(self, prop: str) -> "Element":
        # Uncalled, so make(at: ...) receives the property itself and not its value.
        return Element(self.bridge, f"{self.expression}.{_identifier(prop)}")

    def elements(self, kind: str) -> "Elements":
        name = _identifier(kind)
        if name in ARRAY_PROPERTIES:
            return Elements(self.bridge, f"{self.expression}.{name}()", is_array=True)
        return Elements(self.bridge, f"{self.expression}.{name}")

    def save(self) -> None:
        self.bridge.execute(f"{self.expression}.save()")

    def __repr__(self) -> str:
        return f"Element({self.expression})"


class Elements:
    """Lazy reference to an element collection (or a returned reference list)."""

    def __init__(self, bridge: JXABridge, expression: str, is_array: bool = False) -> None:
        self.bridge = bridge
        self.expression = expression
        self.is_array = is_array

    def count(self) -> int:
        return int(self.bridge.evaluate(f"{self.expression}.length") or 0)

    def at(self, index: int) -> Element:
        return Element(self.bridge, f"{self.expression}[{int(index)}]")

    def all(self) -> List[Element]:
        return [self.at(index) for index in range(self.count())]

    def named(self, name: str) -> Element:
        return Element(self.bridge, f"{self.expression}.byName({_literal(name)})")

    def by_id(self, object_id: Any) -> Element:
        if self.is_array:
            return Element(
                self.bridge,
                f"{self.expression}.find(function (item) {{ return item.id() === {_literal(object_id)}; }})",
            )
        return Element(self.bridge, f"{self.expression}.byId({_literal(object_id)})")

    def whose(self, **criteria: Any) -> List[Element]:
        return self._filtered(_literal(criteria))

    def whose_any(self, prop: str, values: List[Any]) -> List[Element]:
        clauses = [{_identifier(prop): value} for value in values]
        return self._filtered(_literal({"_or": clauses}))

    def values(self, prop: str) -> List[Any]:
        name = _identifier(prop)
        if self.is_array:
            result = self.bridge.evaluate(f"{self.expression}.map(function (item) {{ return item.{name}(); }})")
        else:
            result = self.bridge.evaluate(f"{self.expression}.{name}()")
        return list(result or [])

    def push(self, kind: str, properties: Dict[str, Any]) -> None:
        self.bridge.execute(
            f"{self.expression}.push(Mail.{_identifier(kind)}({_literal(properties)}))"
        )

    def _filtered(self, predicate: str) -> List[Element]:
        filtered = Elements(self.bridge, f"{self.expression}.whose({predicate})")
        return filtered.all()

    def __repr__(self) -> str:
        return f"Elements({self.expression})"


class MailApplication:
    """Application-level entry point of the object model."""

    def __init__(self, bridge: JXABridge) -> None:
        self.bridge = bridge
        self.accounts = Elements(bridge, "Mail.accounts")
        self.mailboxes = Elements(bridge, "Mail.mailboxes")
        self.outgoing_messages = Elements(bridge, "Mail.outgoingMessages")
        self.message_viewers = Elements(bridge, "Mail.messageViewers")

    def running(self) -> bool:
        return bool(self.bridge.evaluate("Mail.running()"))

    def version(self) -> str:
        return str(self.bridge.evaluate("Mail.version()") or "")

    def drafts_mailbox(self) -> Element:
        return Element(self.bridge, "Mail.draftsMailbox()")

    def make(
        self,
        new: str,
        with_properties: Optional[Dict[str, Any]] = None,
        with_data: Any = None,
        at: Optional[Element] = None,
    ) -> Optional[Element]:
        kind = _identifier(new)
        parts = [f"new: {_literal(kind)}"]
        if with_properties is not None:
            parts.append(f"withProperties: {_literal(with_properties)}")
        if with_data is not None:
            parts.append(f"withData: {_literal(with_data)}")
        if at is not None:
            parts.append(f"at: {at.expression}")
        make_call = "Mail.make({" + ", ".join(parts) + "})"

        collection = MAKE_COLLECTIONS.get(kind)
        if collection is None:
            self.bridge.execute(make_call)
            return None

        object_id = self.bridge.run_body(f"    const created = {make_call};\n    return created.id();")
        return Element(self.bridge, f"Mail.{collection}.byId({_literal(object_id)})")

    def delete(self, target: Element) -> None:
        self.bridge.execute(f"Mail.delete({target.expression})")


def connect(app_name: str = "Mail", osascript: str = "osascript", timeout_seconds: float = 30.0) -> MailApplication:
    return MailApplication(JXABridge(app_name=app_name, osascript=osascript, timeout_seconds=timeout_seconds))


def _identifier(name: str) -> str:
    if not IDENTIFIER_PATTERN.match(name or ""):
        raise ValueError(f"Invalid object model identifier '{name}'")
    return name


def _literal(value: Any) -> str:
    # JSON is a valid JavaScript literal, which keeps user text out of the code.
    return json.dumps(value, ensure_ascii=False)


def _extract_error_number(detail: str) -> Optional[int]:
    match = ERROR_NUMBER_PATTERN.search(detail or "")
    if not match:
        return None
    return int(match.group(1))
