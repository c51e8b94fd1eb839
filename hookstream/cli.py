"""
HookStream CLI — Configuration checks, transform testing and simulation.

Commands:
- hookstream check         — Validate hookstream.yaml
- hookstream templates     — List the provider template catalog
- hookstream transform     — Apply a transform file to a JSON payload
- hookstream simulate      — Ingest a template's sample payload in memory
- hookstream logs          — Query JSONL event logs
- hookstream cleanup-logs  — Apply log retention / compression
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger("hookstream.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="hookstream",
        description="HookStream — webhook ingestion and payload transformation",
    )
    parser.add_argument(
        "--config", default=None, help="Path to hookstream.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # hookstream check
    subparsers.add_parser("check", help="Validate hookstream.yaml")

    # hookstream templates
    subparsers.add_parser("templates", help="List webhook provider templates")

    # hookstream transform
    transform_parser = subparsers.add_parser("transform", help="Apply a transform to a payload")
    transform_parser.add_argument("transform", help="Transform file (JSON or YAML)")
    transform_parser.add_argument("payload", help="Payload JSON file ('-' for stdin)")

    # hookstream simulate
    simulate_parser = subparsers.add_parser("simulate", help="Simulate a webhook from a template")
    simulate_parser.add_argument("template_id", help="Template id or provider (e.g., stripe)")
    simulate_parser.add_argument("--payload", help="Payload JSON file (default: template sample)")
    simulate_parser.add_argument("--transform", help="Transform file (JSON or YAML)")

    # hookstream logs
    logs_parser = subparsers.add_parser("logs", help="Query JSONL event logs")
    logs_parser.add_argument("--type", dest="stream", default="webhooks",
                             help="Log stream (default: webhooks)")
    logs_parser.add_argument("--category", default="execution",
                             help="Log category (default: execution)")
    logs_parser.add_argument("--days", type=int, default=7, help="Days to look back (default: 7)")
    logs_parser.add_argument("--limit", type=int, default=50, help="Max entries (default: 50)")
    logs_parser.add_argument("--webhook", help="Only entries for this webhook id")

    # hookstream cleanup-logs
    subparsers.add_parser("cleanup-logs", help="Delete / compress old log files")

    args = parser.parse_args(argv)

    if args.command == "check":
        return cmd_check(args)
    elif args.command == "templates":
        return cmd_templates(args)
    elif args.command == "transform":
        return cmd_transform(args)
    elif args.command == "simulate":
        return cmd_simulate(args)
    elif args.command == "logs":
        return cmd_logs(args)
    elif args.command == "cleanup-logs":
        return cmd_cleanup_logs(args)
    else:
        parser.print_help()
        return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace):
    from hookstream.engine.config import load_config

    return load_config(getattr(args, "config", None))


def _read_document(path: str) -> Any:
    """Read a JSON or YAML document ('-' reads stdin)."""
    if path == "-":
        return yaml.safe_load(sys.stdin.read())
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _load_transform_file(path: str):
    from hookstream.engine.transform import load_transform

    data = _read_document(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a transform object")
    return load_transform(data)


def _print_failures(failures) -> None:
    for failure in failures:
        print(
            f"[WARN] mapping #{failure.mapping_index} -> {failure.target_field}: {failure.message}",
            file=sys.stderr,
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_check(args: argparse.Namespace) -> int:
    """Validate hookstream.yaml and print the effective settings."""
    from hookstream.engine.errors import ConfigError

    try:
        config = _load_config(args)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        for msg in e.context.get("errors", []):
            print(f"  - {msg}")
        return 1

    print(f"[OK] {config.platform.name} ({config.environment})")
    print(f"  buffer capacity: {config.webhooks.default_buffer_capacity}")
    print(f"  transform timeout: {config.transforms.timeout_seconds}s "
          f"({config.transforms.max_workers} workers)")
    print(f"  store: {config.store.backend}")
    print(f"  logs: {config.logging.directory} ({config.logging.level})")
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    """List the provider template catalog."""
    from hookstream.engine.templates import list_templates

    for template in list_templates():
        auth = template.auth_config.type
        if template.auth_config.header:
            auth = f"{auth} ({template.auth_config.header})"
        print(f"{template.id:<18} {template.provider:<14} {auth}")
    return 0


def cmd_transform(args: argparse.Namespace) -> int:
    """Apply a transform file to a payload and print the record."""
    from hookstream.engine.errors import HookStreamError
    from hookstream.engine.sandbox import Sandbox
    from hookstream.engine.transform import TransformEngine

    try:
        config = _load_config(args)
        transform = _load_transform_file(args.transform)
        payload = _read_document(args.payload)
    except (OSError, ValueError, yaml.YAMLError, HookStreamError) as e:
        print(f"[ERROR] {e}")
        return 1

    sandbox = Sandbox(
        timeout_seconds=config.transforms.timeout_seconds,
        max_workers=config.transforms.max_workers,
    )
    try:
        result = TransformEngine(sandbox=sandbox).preview(transform, payload)
    except HookStreamError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        sandbox.shutdown()

    print(json.dumps(result.output, indent=2, default=str))
    _print_failures(result.failures)
    return 0 if result.ok else 1


def cmd_simulate(args: argparse.Namespace) -> int:
    """Register a webhook from a template in memory and ingest a test payload."""
    from hookstream.engine.errors import HookStreamError
    from hookstream.engine.sandbox import Sandbox
    from hookstream.engine.service import WebhookService
    from hookstream.engine.templates import definition_from_template, get_template
    from hookstream.engine.transform import TransformEngine

    template = get_template(args.template_id)
    if template is None:
        print(f"[ERROR] Unknown template: {args.template_id}")
        print("  Run 'hookstream templates' to list available templates.")
        return 1

    try:
        config = _load_config(args)
        transform = _load_transform_file(args.transform) if args.transform else None
        payload = _read_document(args.payload) if args.payload else None
    except (OSError, ValueError, yaml.YAMLError, HookStreamError) as e:
        print(f"[ERROR] {e}")
        return 1

    sandbox = Sandbox(
        timeout_seconds=config.transforms.timeout_seconds,
        max_workers=config.transforms.max_workers,
    )
    service = WebhookService(
        engine=TransformEngine(sandbox=sandbox),
        event_id_prefix=config.webhooks.event_id_prefix,
    )
    try:
        definition = definition_from_template(template.id, webhook_id=template.provider)
        service.register(definition, transform=transform)
        result = service.simulate(definition.id, payload)
    finally:
        sandbox.shutdown()

    if not result.success:
        print(f"[ERROR] {result.error.value}: {result.message}")
        return 1

    print(json.dumps(result.event.to_dict(), indent=2, default=str))
    if result.event.error:
        print(f"[WARN] {result.event.error}", file=sys.stderr)
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    """Print matching log entries, newest first, one JSON object per line."""
    from hookstream.engine.logging import LOG_STREAMS, FileLogger

    categories = LOG_STREAMS.get(args.stream)
    if categories is None or args.category not in categories:
        print(f"[ERROR] Unknown log stream: {args.stream}/{args.category}")
        return 1

    config = _load_config(args)
    log_dir = Path(config.logging.directory)
    if not log_dir.exists():
        print(f"[WARN] No logs found under {log_dir}")
        return 0

    end = date.today()
    filters = {"webhook_id": args.webhook} if args.webhook else None
    entries = FileLogger(log_dir=str(log_dir)).query(
        args.stream,
        args.category,
        start_date=end - timedelta(days=args.days),
        end_date=end,
        filters=filters,
        limit=args.limit,
    )
    for entry in entries:
        print(json.dumps(entry, default=str))
    return 0


def cmd_cleanup_logs(args: argparse.Namespace) -> int:
    """Apply log retention from hookstream.yaml."""
    from hookstream.engine.runtime import WebhookRuntime

    config = _load_config(args)
    result = WebhookRuntime(config).cleanup_logs()
    print(f"[OK] deleted {result['deleted']} file(s), compressed {result['compressed']} file(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
