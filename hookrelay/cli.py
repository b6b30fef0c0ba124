"""Operator command line for hookrelay.

Manages the registry stored by the configured backend and fires triggers.

Usage:
    hookrelay --backend file --db ./webHooksDB.json add deploy https://ci.example.com/hook
    hookrelay --backend file list
    hookrelay --backend file trigger deploy --data '{"ref": "main"}' --header X-Source=cli
    hookrelay --backend file remove deploy https://ci.example.com/hook

Exit codes:
    0 - command succeeded (every delivery succeeded for ``trigger``)
    1 - command failed, or at least one delivery failed
    2 - invalid arguments
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from hookrelay.errors import HookRelayError
from hookrelay.logging import bind_logger_context, configure_logging
from hookrelay.protocols import DeliveryOutcome
from hookrelay.settings import get_settings
from hookrelay.webhooks import WebHooks, create_webhooks


def parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options into a header mapping."""
    headers: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid header {item!r}, expected KEY=VALUE")
        headers[key.strip()] = value.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hookrelay",
        description="Register webhook URLs under shortnames and trigger deliveries",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "file", "redis"],
        help="Storage backend (default: HOOKRELAY_STORAGE_BACKEND or memory)",
    )
    parser.add_argument(
        "--db",
        help="JSON document path for the file backend",
    )
    parser.add_argument(
        "--redis-url",
        help="Redis URL for the redis backend",
    )
    parser.add_argument(
        "--success-code",
        type=int,
        action="append",
        dest="success_codes",
        help="HTTP status counted as success (repeatable, default: 200)",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Register a URL under a shortname")
    add.add_argument("name", help="Shortname")
    add.add_argument("url", help="Destination URL")

    remove = commands.add_parser("remove", help="Remove a URL, or a whole shortname")
    remove.add_argument("name", help="Shortname")
    remove.add_argument("url", nargs="?", help="URL to remove (all URLs if omitted)")

    list_cmd = commands.add_parser("list", help="Show registered webhooks")
    list_cmd.add_argument("name", nargs="?", help="Only show this shortname")

    trigger = commands.add_parser("trigger", help="POST a payload to every URL of a shortname")
    trigger.add_argument("name", help="Shortname")
    trigger.add_argument("--data", help="JSON payload (default: {})")
    trigger.add_argument(
        "--header",
        action="append",
        dest="headers",
        metavar="KEY=VALUE",
        help="Extra request header (repeatable)",
    )
    trigger.add_argument(
        "--wait",
        type=float,
        default=30.0,
        help="Seconds to wait for deliveries to finish (default: 30)",
    )

    return parser


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map global CLI options onto Settings fields."""
    overrides: Dict[str, Any] = {}
    if args.backend:
        overrides["storage_backend"] = args.backend
    if args.db:
        overrides["db_path"] = args.db
    if args.redis_url:
        overrides["redis_url"] = args.redis_url
    if args.success_codes:
        overrides["http_success_codes"] = args.success_codes
    return overrides


async def _add(hooks: WebHooks, args: argparse.Namespace) -> int:
    if await hooks.add(args.name, args.url):
        print(f"added {args.url} to {args.name}")
    else:
        print(f"{args.url} already registered under {args.name}")
    return 0


async def _remove(hooks: WebHooks, args: argparse.Namespace) -> int:
    target = args.url or "all URLs"
    if await hooks.remove(args.name, args.url):
        print(f"removed {target} from {args.name}")
        return 0
    print(f"{args.name}: nothing to remove", file=sys.stderr)
    return 1


async def _list(hooks: WebHooks, args: argparse.Namespace) -> int:
    if args.name:
        for url in await hooks.get_webhook(args.name):
            print(url)
    else:
        print(json.dumps(await hooks.get_db(), indent=2))
    return 0


async def _trigger(hooks: WebHooks, args: argparse.Namespace) -> int:
    urls = await hooks.get_webhook(args.name)
    if not urls:
        print(f"no webhooks registered under {args.name}", file=sys.stderr)
        return 1

    outcomes: List[DeliveryOutcome] = []

    def record(outcome: DeliveryOutcome) -> None:
        outcomes.append(outcome)
        print(json.dumps(outcome.to_dict()))

    hooks.on(f"{args.name}.success", record)
    hooks.on(f"{args.name}.failure", record)
    hooks.trigger(args.name, args.payload, args.header_map)

    if not await hooks.drain(args.wait):
        print(f"timed out after {args.wait}s waiting for deliveries", file=sys.stderr)
        return 1
    return 0 if len(outcomes) == len(urls) and all(o.success for o in outcomes) else 1


COMMANDS = {
    "add": _add,
    "remove": _remove,
    "list": _list,
    "trigger": _trigger,
}


async def run(args: argparse.Namespace, overrides: Dict[str, Any]) -> int:
    with bind_logger_context(command=args.command):
        hooks = create_webhooks(**overrides)
        await hooks.start()
        try:
            return await COMMANDS[args.command](hooks, args)
        finally:
            await hooks.aclose(timeout=getattr(args, "wait", None))


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "trigger":
        try:
            args.payload = json.loads(args.data) if args.data is not None else None
            args.header_map = parse_headers(args.headers)
        except ValueError as e:
            parser.error(str(e))

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)

    try:
        return asyncio.run(run(args, settings_overrides(args)))
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    except HookRelayError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
