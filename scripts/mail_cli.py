#!/usr/bin/env python3
"""CLI entrypoint for the apple-mail skill."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Tuple

from envelope import failure
from mail_config import MailConfig
from mail_errors import INVALID_ARGUMENT, UNKNOWN, MailError
from mail_logging import setup_logging
from mail_operations import OPERATIONS, execute_cli


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    output_format, cleaned_argv = extract_output_format(list(sys.argv[1:] if argv is None else argv))

    parser = argparse.ArgumentParser(description="Apple Mail automation CLI")
    root = parser.add_subparsers(dest="operation", required=True)

    for name in sorted(OPERATIONS):
        spec = OPERATIONS[name]
        command = root.add_parser(name, help=spec.description)
        command.add_argument(
            "values",
            nargs="*",
            metavar="ARG",
            help=f"Positional arguments: {', '.join(spec.positional) or 'none'}",
        )
        command.add_argument("--args-json", default=None, help="All arguments as one JSON object")

    args = parser.parse_args(cleaned_argv)
    args.format = output_format
    return args


def extract_output_format(argv: List[str]) -> Tuple[str, List[str]]:
    fmt = "json"
    cleaned: List[str] = []
    skip_next = False

    for index, arg in enumerate(argv):
        if skip_next:
            skip_next = False
            continue

        if arg == "--format":
            if index + 1 >= len(argv):
                raise ValueError("--format requires a value: json or text")
            fmt = argv[index + 1].strip().lower()
            skip_next = True
            continue

        if arg.startswith("--format="):
            fmt = arg.split("=", 1)[1].strip().lower()
            continue

        cleaned.append(arg)

    if fmt not in {"json", "text"}:
        raise ValueError("--format must be one of: json, text")

    return fmt, cleaned


def main(argv: Optional[List[str]] = None) -> int:
    output_format = "json"
    try:
        args = parse_args(argv)
        output_format = args.format
        config = MailConfig.from_env()
        setup_logging(debug=config.debug, log_file=config.log_file)
        envelope = execute_cli(args.operation, args.values, args.args_json, config=config)
    except MailError as err:
        envelope = failure(str(err), err.code)
    except ValueError as err:
        envelope = failure(str(err), INVALID_ARGUMENT)
    except OSError as err:
        envelope = failure(f"{err.__class__.__name__}: {err}", UNKNOWN)

    emit(envelope, output_format)
    return 0 if envelope.get("success") else 1


def emit(payload: Dict[str, Any], fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))
        return

    if payload.get("success"):
        print(render_text(payload.get("data", {})))
        if payload.get("errorCode"):
            print(f"WARNING [{payload['errorCode']}]: {payload['data'].get('warning')}")
    else:
        print(f"ERROR [{payload.get('errorCode')}]: {payload.get('error')}")


def render_text(result: Any) -> str:
    if isinstance(result, (str, int, float, bool)) or result is None:
        return str(result)

    if isinstance(result, list):
        return "\n".join(f"- {json.dumps(item, sort_keys=True, ensure_ascii=False)}" for item in result)

    if isinstance(result, dict):
        lines: List[str] = []
        for key in sorted(result.keys()):
            value = result[key]
            if isinstance(value, (dict, list)):
                lines.append(f"{key}:")
                lines.append(json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False))
            else:
                lines.append(f"{key}: {value}")
        return "\n".join(lines)

    return json.dumps(result, sort_keys=True, ensure_ascii=False)


if __name__ == "__main__":
    raise SystemExit(main())
