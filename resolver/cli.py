"""CLI entry point for the resolver bot."""

import argparse
import asyncio
import logging
import os

import httpx

from resolver.backend.coordinator import CoordinatorClient
from resolver.chain.ledger import LedgerClient
from resolver.config.loader import (
    get_config_value,
    load_config,
    missing_secrets,
    save_config,
    set_config_value,
)
from resolver.config.schema import ObservationMode, ResolverConfig
from resolver.context import ResolverContext
from resolver.daemon import (
    ResolverDaemon,
    daemon_status,
    request_subscription_mode,
    request_sweep,
    resolver_address_from_key,
    stop_daemon,
)
from resolver.models.settlement import SettlementStatus
from resolver.payments.razorpayx import RazorpayXClient
from resolver.pipeline.resolver_pipeline import ResolverPipeline

DEFAULT_CONFIG = "ops/configs/default.yaml"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="resolver",
        description="UPI settlement resolver bot",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG, help="Config YAML path"
    )

    sub = parser.add_subparsers(dest="command")

    # run
    run_p = sub.add_parser("run", help="Run the resolver daemon")
    run_p.add_argument(
        "--mode",
        choices=[m.value for m in ObservationMode],
        help="Event observation mode (overrides config)",
    )

    sub.add_parser("stop", help="Stop a running resolver")
    sub.add_parser("status", help="Show daemon state")
    sub.add_parser("health", help="Query the running resolver's /health")

    settle_p = sub.add_parser("settle", help="Settle one accepted order now")
    settle_p.add_argument("order_id", help="0x-prefixed 32-byte order id")

    sub.add_parser("sweep", help="Ask the running resolver to sweep pending payments")
    sub.add_parser(
        "subscribe", help="Ask the running resolver to return to subscription mode"
    )

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    if args.command == "run":
        return _cmd_run(config, args)
    elif args.command == "stop":
        return stop_daemon()
    elif args.command == "status":
        return daemon_status()
    elif args.command == "health":
        return _cmd_health(config)
    elif args.command == "settle":
        return _cmd_settle(config, args)
    elif args.command == "sweep":
        return request_sweep()
    elif args.command == "config":
        return _cmd_config(config, args)
    elif args.command == "subscribe":
        return request_subscription_mode()
    else:
        parser.print_help()
        return 1


def _cmd_run(config: ResolverConfig, args) -> int:
    if args.mode:
        config = set_config_value(config, "observer.mode", args.mode)
    print(f"🔄 Resolver starting ({config.observer.mode} mode)")
    print("   Stop: python -m resolver stop")
    return ResolverDaemon(config).start()


def _cmd_health(config: ResolverConfig) -> int:
    url = f"http://localhost:{config.callback.port}/health"
    try:
        resp = httpx.get(url, timeout=5.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Resolver: FAIL ({e})")
        return 1
    for key, value in resp.json().items():
        print(f"{key}: {value}")
    return 0


def _cmd_settle(config: ResolverConfig, args) -> int:
    missing = missing_secrets()
    if missing:
        print(f"Error: missing environment variables: {', '.join(missing)}")
        return 1
    return asyncio.run(_settle_once(config, args.order_id))


async def _settle_once(config: ResolverConfig, order_id: str) -> int:
    context = ResolverContext(
        config=config,
        resolver_address=resolver_address_from_key(os.environ["RESOLVER_PRIVATE_KEY"]),
    )
    ledger = LedgerClient(config.chain)
    ledger.connect()
    coordinator = CoordinatorClient(config.coordinator)
    payments = RazorpayXClient(config.payments)
    pipeline = ResolverPipeline(context, ledger, coordinator, payments)
    try:
        result = await pipeline.settlement.settle(order_id)
    finally:
        await pipeline.close()
        await coordinator.aclose()
        await payments.aclose()
        await ledger.close()

    print(f"Order {result.order_id}: {result.status}")
    if result.payout is not None:
        print(f"  Payout: {result.payout.payout_id} ({result.payout.status})")
    if result.error_message:
        print(f"  {result.stage or ''} {result.error_class}: {result.error_message}")
    return 0 if result.status is SettlementStatus.SETTLED else 1


def _cmd_config(config: ResolverConfig, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = (part.strip() for part in kv.split("=", 1))
        # Edit the file as written; environment overrides stay out of it.
        on_disk = load_config(args.config, env={})
        try:
            new_config = set_config_value(on_disk, key, value)
        except (KeyError, ValueError) as e:
            print(f"Error: {e}")
            return 1
        save_config(new_config, args.config)
        print(f"Set {key} = {get_config_value(new_config, key)} in {args.config}")
        print("   Restart the resolver to apply")
        return 0
    else:
        print("Use: config show | config set key=value")
        return 1
