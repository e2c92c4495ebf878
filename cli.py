#!/usr/bin/env python3
"""Simple CLI for exercising the marketplace chain service locally"""

import argparse
import asyncio
import json
import sys
from typing import List

from marketplace_chain.config import Settings
from marketplace_chain.core.recovery import ServiceError
from marketplace_chain.logging_config import setup_logging
from marketplace_chain.services import ConnectionSupervisor, TransactionService
from marketplace_chain.services.events import EVENT_RECORDS


def _parse_arg(raw: str):
    """Integers stay integers, everything else is passed as a string."""
    try:
        return int(raw, 0)
    except ValueError:
        return raw


async def cli_watch(settings: Settings, events: List[str]) -> int:
    """Stream new blocks and normalized contract events until interrupted"""
    service = TransactionService(settings)
    await service.initialize()
    supervisor = ConnectionSupervisor(service)
    await supervisor.start()

    service.subscribe_blocks(lambda height: print(f"🧱 block {height}"))
    for name in events:
        service.subscribe_contract_event(
            name, lambda record: print(f"📣 {json.dumps(record.model_dump())}")
        )

    print(f"👀 Watching {service.contract.address} for {', '.join(events) or 'blocks'} (Ctrl-C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await supervisor.stop()
        await service.shutdown()
    return 0


async def cli_call(settings: Settings, function: str, args: List[str]) -> int:
    """Read-only contract call with retry"""
    service = TransactionService(settings.model_copy(update={"log_chain_events": False}))
    await service.initialize(start_polling=False)
    try:
        result = await service.call(function, *[_parse_arg(a) for a in args])
    finally:
        await service.shutdown()
    print(result)
    return 0


async def cli_health(settings: Settings) -> int:
    service = TransactionService(settings.model_copy(update={"log_chain_events": False}))
    await service.initialize(start_polling=False)
    try:
        status = await service.health()
    finally:
        await service.shutdown()
    print(json.dumps(status, indent=2, default=str))
    return 0 if status.get("status") == "healthy" else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Marketplace chain service CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Stream blocks and contract events")
    watch.add_argument(
        "--event",
        action="append",
        choices=sorted(EVENT_RECORDS),
        help="Contract event to watch (repeatable, default DataPurchased)",
    )

    call = sub.add_parser("call", help="Call a read-only contract function")
    call.add_argument("function")
    call.add_argument("args", nargs="*")

    sub.add_parser("health", help="Check the RPC endpoint")

    args = parser.parse_args()
    setup_logging(args.log_level)
    settings = Settings()

    try:
        if args.command == "watch":
            return asyncio.run(cli_watch(settings, args.event or ["DataPurchased"]))
        if args.command == "call":
            return asyncio.run(cli_call(settings, args.function, args.args))
        return asyncio.run(cli_health(settings))
    except ServiceError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\n👋 Stopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
