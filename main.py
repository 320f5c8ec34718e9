"""
Molt Swarm Economy -- Entry Point

Agents earn and spend credits through x402-priced resources, molt through
five capability stages as their activity grows, decay when idle, and pick
up paid work from the swarm task board.

Usage:
    python main.py serve                      # run the HTTP API
    python main.py wallet <agent-id>          # show an agent's wallet
    python main.py tasks [--stage N]          # list open tasks for a stage
    python main.py seed                       # post the starter task set
    python main.py info                       # protocol and gated resources

All commands accept --config (default: config/economy.yaml).
"""

import argparse
import json
import sys
from typing import List, Optional

from economy.api import ApiRequest, SwarmAPI
from economy.config import EconomyConfig
from economy.logs import configure_logging
from economy.server import run_server


def _print(body: dict) -> None:
    print(json.dumps(body, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="moltswarm", description="Molt swarm economy")
    parser.add_argument("--config", default="config/economy.yaml", help="YAML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    wallet = sub.add_parser("wallet", help="show an agent's wallet")
    wallet.add_argument("agent_id")

    tasks = sub.add_parser("tasks", help="list open tasks")
    tasks.add_argument("--stage", type=int, default=0)

    sub.add_parser("seed", help="post the starter task set if the board is empty")
    sub.add_parser("info", help="show protocol info")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the molt swarm economy."""
    args = build_parser().parse_args(argv)
    config = EconomyConfig.from_yaml(args.config)
    configure_logging(config.log_level, config.log_json)
    api = SwarmAPI.from_config(config)

    if args.command == "serve":
        run_server(api, args.host or config.host, args.port or config.port)
        return 0

    if args.command == "seed":
        created = api.coordinator.seed_tasks_if_empty()
        _print({"seeded": len(created)})
        return 0

    if args.command == "wallet":
        request = ApiRequest("GET", f"/api/agents/{args.agent_id}/wallet")
    elif args.command == "tasks":
        request = ApiRequest("GET", "/api/swarm/tasks", query={"stage": str(args.stage)})
    else:
        request = ApiRequest("GET", "/api/x402/info")

    response = api.handle(request)
    _print(response.body)
    return 0 if response.status < 400 else 1


if __name__ == "__main__":
    sys.exit(main())
