"""Operator command line for the alert engine.

Devices and rules are read from a JSON fixtures file (see
:func:`agro_alerts.stores.load_fixtures`). Alert history is kept in the JSON
file named by ``--history-file`` or ``ALERT_HISTORY_FILE`` so that cooldowns
and cleanup carry across runs; without one it lives in memory for the
duration of the command.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from . import config
from .channels import SmsChannel
from .engine import AlertEngine
from .errors import AlertEngineError
from .logger import setup_logging
from .stores import (
    InMemoryDeviceRegistry,
    InMemoryRuleStore,
    build_history,
    load_fixtures,
)

logger = logging.getLogger(__name__)


def build_engine(fixtures: str | None, history_file: str | None = None) -> AlertEngine:
    if fixtures:
        registry, rules = load_fixtures(fixtures)
    else:
        registry, rules = InMemoryDeviceRegistry(), InMemoryRuleStore()
    return AlertEngine(registry, rules, build_history(history_file))


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_values(args: argparse.Namespace) -> dict[str, Any]:
    if args.values_file:
        with open(args.values_file) as f:
            return json.load(f)
    return json.loads(args.values or "{}")


async def _run(args: argparse.Namespace) -> int:
    if args.command == "check-sms":
        result = await asyncio.to_thread(SmsChannel().check_connection)
        _print(result)
        return 0 if result.get("success") else 1

    engine = build_engine(args.fixtures, args.history_file)

    if args.command == "trigger":
        outcomes = await engine.process_sample(args.device_id, _load_values(args))
        _print([o.to_dict() for o in outcomes])
        return 0
    if args.command == "test-rule":
        outcome = await engine.test_rule(args.user_id, args.rule_id, args.device)
        _print(outcome.to_dict())
        return 0 if outcome.fired else 1
    if args.command == "cooldown":
        _print(engine.cooldown_status(args.user_id))
        return 0
    if args.command == "reset-cooldown":
        removed = engine.reset_cooldown(args.user_id, args.rule)
        _print({"userId": args.user_id, "ruleId": args.rule, "removed": removed})
        return 0
    if args.command == "cleanup":
        removed = await engine.cleanup(args.days)
        _print({"removed": removed})
        return 0
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agro-alerts",
        description="Evaluate telemetry against alert rules and manage suppression",
    )
    parser.add_argument("--fixtures", help="JSON file with devices and rules")
    parser.add_argument(
        "--history-file", default=None, help="JSON file holding triggered alerts"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    trigger = sub.add_parser("trigger", help="Evaluate one telemetry sample")
    trigger.add_argument("device_id")
    group = trigger.add_mutually_exclusive_group()
    group.add_argument("--values", help="Sample values as a JSON object")
    group.add_argument("--values-file", help="File holding the sample JSON object")

    test_rule = sub.add_parser("test-rule", help="Send a test alert for one rule")
    test_rule.add_argument("user_id")
    test_rule.add_argument("rule_id")
    test_rule.add_argument("--device", default=None, help="Device id for the message")

    cooldown = sub.add_parser("cooldown", help="Show suppression state for a user")
    cooldown.add_argument("user_id")

    reset = sub.add_parser("reset-cooldown", help="Clear suppression state")
    reset.add_argument("user_id")
    reset.add_argument("--rule", default=None, help="Only this rule id")

    cleanup = sub.add_parser("cleanup", help="Purge old triggered alerts")
    cleanup.add_argument(
        "--days",
        type=int,
        default=config.HISTORY_RETENTION_DAYS,
        help="Retention in days (default: %(default)s)",
    )

    sub.add_parser("check-sms", help="Verify Twilio credentials")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    config.validate_settings()
    try:
        return asyncio.run(_run(args))
    except (AlertEngineError, OSError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 2


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
