#!/usr/bin/env python3
"""Uniform result envelope: ``{success, data, error, errorCode, logs}``."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from jxa_bridge import BridgeError, BridgeUnavailableError
from mail_errors import (
    MAIL_APP_NO_PERMISSIONS,
    MAIL_APP_NOT_RUNNING,
    NO_PERMISSIONS_MESSAGE,
    NOT_RUNNING_MESSAGE,
    PARTIAL_FAILURE,
    UNKNOWN,
    MailError,
    classify_error_text,
)
from mail_logging import OperationLogCapture, get_logger

logger = get_logger("envelope")

# Operations that succeed with unapplied sub-items put the notice here.
WARNING_KEY = "warning"


def success(data: Any, logs: str = "", error_code: Optional[str] = None) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {"success": True, "data": data}
    if error_code is None and isinstance(data, dict) and data.get(WARNING_KEY):
        error_code = PARTIAL_FAILURE
    if error_code:
        envelope["errorCode"] = error_code
    if logs:
        envelope["logs"] = logs
    return envelope


def failure(error: str, error_code: str = UNKNOWN, logs: str = "") -> Dict[str, Any]:
    envelope: Dict[str, Any] = {"success": False, "error": error, "errorCode": error_code}
    if logs:
        envelope["logs"] = logs
    return envelope


def describe_error(err: BaseException) -> Dict[str, str]:
    """Error text and taxonomy code for any exception."""
    if isinstance(err, MailError):
        return {"error": str(err), "errorCode": err.code}

    if isinstance(err, BridgeError):
        code = classify_error_text(str(err))
        if isinstance(err, BridgeUnavailableError):
            code = MAIL_APP_NOT_RUNNING
        if code == MAIL_APP_NO_PERMISSIONS:
            return {"error": f"{NO_PERMISSIONS_MESSAGE} ({err})", "errorCode": code}
        if code == MAIL_APP_NOT_RUNNING and not isinstance(err, BridgeUnavailableError):
            return {"error": f"{NOT_RUNNING_MESSAGE} ({err})", "errorCode": code}
        return {"error": str(err), "errorCode": code}

    return {"error": f"{err.__class__.__name__}: {err}", "errorCode": UNKNOWN}


def run_operation(name: str, operation: Callable[[], Any]) -> Dict[str, Any]:
    """Run ``operation`` and wrap its outcome; never raises."""
    with OperationLogCapture() as capture:
        try:
            data = operation()
        except Exception as err:  # the envelope is the only way errors leave an operation
            described = describe_error(err)
            if described["errorCode"] == UNKNOWN:
                logger.debug("%s failed", name, exc_info=True)
            logger.info("%s failed: %s", name, described["error"])
            return failure(described["error"], described["errorCode"], capture.text())
        return success(data, capture.text())
