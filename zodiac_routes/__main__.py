#!/usr/bin/env python3
"""
Command line wrapper.

    python -m zodiac_routes plan  --route route.json --transactions txs.json
    python -m zodiac_routes check --route route.json --transactions txs.json
    python -m zodiac_routes rank  routes.json

Routes and transactions are read from JSON files and results are printed as
JSON on stdout. Configuration comes from the environment (see ``config``).
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from .config import Settings
from .errors import RouteError
from .models import MetaTransaction, Route, plan_to_json
from .permissions import check_permissions
from .plan import plan_execution
from .rank import rank_routes


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure root logging on stderr so stdout stays machine readable."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [zodiac_routes] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    return logging.getLogger("zodiac_routes")


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text())


def _load_transactions(path: str) -> List[MetaTransaction]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = [data]
    return [MetaTransaction.from_dict(item) for item in data]


def _parse_roles(values: Optional[List[str]]) -> dict:
    roles = {}
    for value in values or []:
        roles_mod, sep, role = value.rpartition("=")
        if not sep:
            raise ValueError(f"Expected <roles-mod>=<role>, got {value!r}")
        roles[roles_mod] = role
    return roles


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zodiac_routes", description="Plan and check execution along account routes"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("plan", "Print the execution plan for transactions along a route"),
        ("check", "Check the transactions against the route's first Roles modifier"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("--route", required=True, help="Route JSON file")
        command.add_argument(
            "--transactions", required=True, help="JSON file with one or more transactions"
        )
        command.add_argument(
            "--role",
            action="append",
            metavar="ROLES_MOD=ROLE",
            help="Role to use at a Roles modifier, by prefixed address",
        )
        command.add_argument("--multisend", help="Multisend contract to batch with")

    rank = commands.add_parser("rank", help="Order routes by execution friction")
    rank.add_argument("routes", help="JSON file with a list of routes")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> Any:
    if args.command == "rank":
        routes = [Route.from_dict(item) for item in _load_json(args.routes)]
        return [route.to_dict() for route in rank_routes(routes)]

    route = Route.from_dict(_load_json(args.route))
    transactions = _load_transactions(args.transactions)
    options = settings.to_options(roles=_parse_roles(args.role), multi_send=args.multisend)
    if args.command == "plan":
        return plan_to_json(await plan_execution(transactions, route, options))
    result = await check_permissions(transactions, route, options)
    if not result["success"]:
        result = {"success": False, "error": result["error"].value}
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.verbose)

    try:
        output = asyncio.run(run(args, Settings.from_env()))
    except (RouteError, OSError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
