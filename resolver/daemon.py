"""Resolver daemon: observes the ledger, wins orders, pays them out.

Runs as a single long-lived asyncio process. Infrastructure faults are
absorbed by the resilience supervisor; an unclassified error escaping the
observer loops stops the daemon with exit code 1.

Usage:
    python -m resolver run --config ops/configs/default.yaml
    python -m resolver run --mode subscription
    python -m resolver stop
"""

import asyncio
import json
import logging
import os
import signal
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

from eth_account import Account

from resolver.auction.channel import AuctionChannel
from resolver.backend.coordinator import CoordinatorClient
from resolver.chain.ledger import LedgerClient
from resolver.config.loader import missing_secrets
from resolver.config.schema import ResolverConfig
from resolver.context import ResolverContext
from resolver.pipeline.resolver_pipeline import ResolverPipeline
from resolver.payments.razorpayx import RazorpayXClient
from resolver.reporting.formatters import format_native_balance, format_status
from resolver.server.callback import CallbackServer, create_callback_app

logger = logging.getLogger(__name__)

STATE_INTERVAL = 15
PID_DIR = Path("data")
PID_FILE = PID_DIR / "resolver.pid"
STATE_FILE = PID_DIR / "resolver_state.json"
LOG_DIR = Path("logs")
MAX_LOG_FILES = 30


def resolver_address_from_key(private_key: str) -> str:
    return Account.from_key(private_key).address


class ResolverDaemon:
    """Runs the resolver pipeline with signal handling and a PID file."""

    def __init__(
        self,
        config: ResolverConfig,
        env: dict[str, str] | None = None,
        ledger: LedgerClient | None = None,
        coordinator: CoordinatorClient | None = None,
        payments: RazorpayXClient | None = None,
        auction_channel: AuctionChannel | None = None,
    ):
        self.config = config
        self.env = dict(os.environ) if env is None else env
        self._ledger = ledger
        self._coordinator = coordinator
        self._payments = payments
        self._channel = auction_channel
        self.context: ResolverContext | None = None
        self.pipeline: ResolverPipeline | None = None
        self._stop = asyncio.Event()
        self._started_at: str | None = None
        self._log_handler: logging.Handler | None = None

    def start(self) -> int:
        """Start the daemon and block until it stops. Returns the exit code."""
        self._check_not_already_running()
        self._write_pid()
        self._started_at = datetime.now(UTC).isoformat()
        self._attach_log_file()
        try:
            return asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Daemon interrupted by keyboard")
            return 0
        finally:
            self._cleanup()

    def request_stop(self) -> None:
        self._stop.set()

    async def run(self) -> int:
        missing = missing_secrets(self.env)
        if missing:
            logger.error("Missing required environment variables: %s", ", ".join(missing))
            return 1

        address = resolver_address_from_key(self.env["RESOLVER_PRIVATE_KEY"])
        self.context = ResolverContext(config=self.config, resolver_address=address)
        self._stop = asyncio.Event()

        ledger = self._ledger or LedgerClient(self.config.chain)
        coordinator = self._coordinator or CoordinatorClient(self.config.coordinator)
        payments = self._payments or RazorpayXClient(
            self.config.payments,
            key_id=self.env["RAZORPAYX_KEY_ID"],
            key_secret=self.env["RAZORPAYX_KEY_SECRET"],
        )
        self.pipeline = pipeline = ResolverPipeline(self.context, ledger, coordinator, payments)
        server = CallbackServer(
            self.config.callback,
            create_callback_app(self.context, pipeline.schedule_settlement),
        )
        channel = self._channel
        if channel is None and self.config.auction.enabled:
            channel = AuctionChannel(self.config.auction, pipeline.participant)

        logger.info("Resolver address: %s", address)
        ledger.connect()
        chain_id = await ledger.chain_id()
        balance = await ledger.balance(address)
        logger.info("Connected to chain %d, balance %s", chain_id, format_native_balance(balance))
        if balance == 0:
            logger.warning("Resolver has zero balance; transactions may fail")

        self._setup_signals(pipeline)
        await server.start()
        await coordinator.register_resolver(address, self.config.callback.callback_url)
        if channel is not None:
            await channel.connect()

        await pipeline.observer.start()
        tasks = [
            asyncio.create_task(pipeline.observer.run(), name="observer"),
            asyncio.create_task(pipeline.observer.run_health_check(), name="health_check"),
            asyncio.create_task(self._state_loop(), name="state"),
        ]
        stopper = asyncio.create_task(self._stop.wait(), name="stop")

        exit_code = 0
        try:
            done, _ = await asyncio.wait([stopper, *tasks], return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is stopper or task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    logger.error(
                        "Fatal error in %s: %r", task.get_name(), exc, exc_info=exc,
                    )
                    exit_code = 1
        finally:
            logger.info("Shutting down resolver...")
            for task in [stopper, *tasks]:
                task.cancel()
            await asyncio.gather(stopper, *tasks, return_exceptions=True)
            await server.stop()
            if channel is not None:
                await channel.disconnect()
            await pipeline.close()
            await coordinator.aclose()
            await payments.aclose()
            await ledger.close()
            self._save_state()
        return exit_code

    async def _state_loop(self) -> None:
        while True:
            self._save_state()
            await asyncio.sleep(STATE_INTERVAL)

    def _setup_signals(self, pipeline: ResolverPipeline) -> None:
        """SIGTERM/SIGINT stop gracefully.

        SIGUSR1 triggers a pending-payment sweep; SIGUSR2 switches a process
        that fell back to polling back to subscription mode.
        """
        loop = asyncio.get_running_loop()

        def _stop(sig: signal.Signals) -> None:
            logger.info("Received %s, shutting down gracefully...", sig.name)
            self.request_stop()

        def _sweep() -> None:
            logger.info("Received SIGUSR1, sweeping pending payments")
            pipeline.start_sweep()

        def _subscribe() -> None:
            logger.info("Received SIGUSR2, re-enabling subscription mode")
            if not pipeline.supervisor.request_subscription_mode():
                logger.info("Subscription mode already active")

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _stop, sig)
        loop.add_signal_handler(signal.SIGUSR1, _sweep)
        loop.add_signal_handler(signal.SIGUSR2, _subscribe)

    def _attach_log_file(self) -> None:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        handler = logging.FileHandler(LOG_DIR / f"resolver_{timestamp}.log")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)
        self._log_handler = handler
        self._rotate_logs()

    def _rotate_logs(self) -> None:
        """Keep only the most recent log files."""
        logs = sorted(LOG_DIR.glob("resolver_*.log"))
        if len(logs) > MAX_LOG_FILES:
            for old in logs[: len(logs) - MAX_LOG_FILES]:
                old.unlink(missing_ok=True)

    def _check_not_already_running(self) -> None:
        """Prevent duplicate daemons."""
        if PID_FILE.exists():
            try:
                pid = int(PID_FILE.read_text().strip())
                os.kill(pid, 0)
                print(f"❌ Resolver already running (pid {pid}). Stop it first:")
                print("   python -m resolver stop")
                sys.exit(1)
            except (ProcessLookupError, ValueError):
                PID_FILE.unlink(missing_ok=True)
            except PermissionError:
                print(f"❌ Resolver may be running (pid {pid}), can't verify.")
                sys.exit(1)

    def _write_pid(self) -> None:
        PID_DIR.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))

    def state(self) -> dict:
        state = {
            "pid": os.getpid(),
            "started_at": self._started_at,
            "last_update": datetime.now(UTC).isoformat(),
        }
        if self.context is not None:
            health = self.context.health
            state.update(
                resolver=self.context.resolver_address,
                mode=health.mode.value,
                fell_back_to_polling=health.fell_back_to_polling,
                watermark=health.last_seen_block,
                stale_subscription_errors=health.stale_subscription_errors,
                reconnects=health.reconnects,
                processing=self.context.registry.processing_count,
                processed=self.context.registry.processed_count,
                active_auctions=len(self.context.auctions),
            )
        return state

    def _save_state(self) -> None:
        """Persist daemon stats for status reporting."""
        PID_DIR.mkdir(parents=True, exist_ok=True)
        STATE_FILE.write_text(json.dumps(self.state(), indent=2))

    def _cleanup(self) -> None:
        PID_FILE.unlink(missing_ok=True)
        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None
        logger.info("Resolver stopped")


def _read_pid() -> int | None:
    if not PID_FILE.exists():
        return None
    try:
        return int(PID_FILE.read_text().strip())
    except ValueError:
        return None


def _is_running(pid: int | None) -> bool:
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, PermissionError):
        return False
    return True


def stop_daemon() -> int:
    """Stop a running daemon by sending SIGTERM."""
    if not PID_FILE.exists():
        print("No resolver running (no PID file found)")
        return 1

    pid = _read_pid()
    if pid is None:
        print("Corrupt PID file, removing")
        PID_FILE.unlink(missing_ok=True)
        return 1

    if not _is_running(pid):
        print(f"Resolver not running (stale pid {pid}), cleaning up")
        PID_FILE.unlink(missing_ok=True)
        return 0

    print(f"Stopping resolver (pid {pid})...")
    os.kill(pid, signal.SIGTERM)

    for _ in range(60):
        time.sleep(1)
        if not _is_running(pid):
            print("✅ Resolver stopped")
            PID_FILE.unlink(missing_ok=True)
            return 0

    print("⚠️  Resolver didn't stop in 60s, sending SIGKILL")
    os.kill(pid, signal.SIGKILL)
    PID_FILE.unlink(missing_ok=True)
    return 0


def request_sweep() -> int:
    """Ask the running daemon to sweep pending payments (SIGUSR1)."""
    pid = _read_pid()
    if not _is_running(pid):
        print("No resolver running")
        return 1
    os.kill(pid, signal.SIGUSR1)
    print(f"Sweep requested (pid {pid})")
    return 0


def request_subscription_mode() -> int:
    """Ask the running daemon to leave polling fallback (SIGUSR2)."""
    pid = _read_pid()
    if not _is_running(pid):
        print("No resolver running")
        return 1
    os.kill(pid, signal.SIGUSR2)
    print(f"Subscription mode requested (pid {pid})")
    return 0


def daemon_status() -> int:
    """Print daemon status from state file."""
    if not STATE_FILE.exists():
        print("No resolver state found")
        if PID_FILE.exists():
            pid = _read_pid()
            print(f"  (PID file exists: {pid}, running={_is_running(pid)})")
        return 1

    state = json.loads(STATE_FILE.read_text())
    pid = state.get("pid")
    running = isinstance(pid, int) and _is_running(pid)
    print(format_status(state, running))
    return 0
