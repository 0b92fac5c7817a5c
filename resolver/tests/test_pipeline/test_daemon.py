"""Tests for the resolver daemon."""

import asyncio
import json
import os
import signal
from unittest.mock import MagicMock

import pytest

from resolver.config.schema import ResolverConfig
from resolver.daemon import (
    ResolverDaemon,
    daemon_status,
    request_subscription_mode,
    request_sweep,
    resolver_address_from_key,
    stop_daemon,
)


@pytest.fixture
def tmp_data(tmp_path, monkeypatch):
    """Redirect PID/state files to temp directory."""
    pid_file = tmp_path / "resolver.pid"
    state_file = tmp_path / "resolver_state.json"
    monkeypatch.setattr("resolver.daemon.PID_FILE", pid_file)
    monkeypatch.setattr("resolver.daemon.PID_DIR", tmp_path)
    monkeypatch.setattr("resolver.daemon.STATE_FILE", state_file)
    monkeypatch.setattr("resolver.daemon.LOG_DIR", tmp_path / "logs")
    return {"pid": pid_file, "state": state_file, "dir": tmp_path}


class TestResolverAddress:
    def test_derived_from_key(self):
        key = "0x" + "00" * 31 + "01"
        assert resolver_address_from_key(key) == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"


class TestResolverDaemon:
    @pytest.mark.asyncio
    async def test_missing_secrets_exit_1(self, tmp_data):
        daemon = ResolverDaemon(ResolverConfig(), env={})
        assert await daemon.run() == 1
        assert daemon.context is None

    def test_start_writes_and_removes_pid(self, tmp_data):
        daemon = ResolverDaemon(ResolverConfig(), env={})
        assert daemon.start() == 1
        assert not tmp_data["pid"].exists()
        assert list((tmp_data["dir"] / "logs").glob("resolver_*.log"))

    def test_save_state(self, tmp_data, context):
        daemon = ResolverDaemon(ResolverConfig(), env={})
        daemon.context = context
        context.health.last_seen_block = 77
        daemon._save_state()
        state = json.loads(tmp_data["state"].read_text())
        assert state["pid"] == os.getpid()
        assert state["watermark"] == 77
        assert state["mode"] == "polling"
        assert state["processed"] == 0


class TestSignals:
    @pytest.fixture
    async def signalled(self):
        daemon = ResolverDaemon(ResolverConfig(), env={})
        pipeline = MagicMock()
        daemon._setup_signals(pipeline)
        yield daemon, pipeline
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1, signal.SIGUSR2):
            loop.remove_signal_handler(sig)

    @pytest.mark.asyncio
    async def test_sigusr2_reenables_subscription_mode(self, signalled):
        _, pipeline = signalled
        os.kill(os.getpid(), signal.SIGUSR2)
        await asyncio.sleep(0.05)
        pipeline.supervisor.request_subscription_mode.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_sigusr1_starts_tracked_sweep(self, signalled):
        _, pipeline = signalled
        os.kill(os.getpid(), signal.SIGUSR1)
        await asyncio.sleep(0.05)
        pipeline.start_sweep.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_sigterm_requests_stop(self, signalled):
        daemon, _ = signalled
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)
        assert daemon._stop.is_set()


class TestStopAndStatus:
    def test_stop_without_pid(self, tmp_data, capsys):
        assert stop_daemon() == 1
        assert "No resolver running" in capsys.readouterr().out

    def test_stop_stale_pid(self, tmp_data, capsys):
        tmp_data["pid"].write_text("999999999")
        assert stop_daemon() == 0
        assert not tmp_data["pid"].exists()

    def test_corrupt_pid(self, tmp_data):
        tmp_data["pid"].write_text("not-a-pid")
        assert stop_daemon() == 1
        assert not tmp_data["pid"].exists()

    def test_sweep_without_daemon(self, tmp_data):
        assert request_sweep() == 1

    def test_subscribe_without_daemon(self, tmp_data, capsys):
        assert request_subscription_mode() == 1
        assert "No resolver running" in capsys.readouterr().out

    def test_status_without_state(self, tmp_data, capsys):
        assert daemon_status() == 1
        assert "No resolver state" in capsys.readouterr().out

    def test_status_from_state(self, tmp_data, capsys):
        tmp_data["state"].write_text(json.dumps({
            "pid": 999999999, "mode": "subscription", "watermark": 12,
            "fell_back_to_polling": False,
        }))
        assert daemon_status() == 0
        out = capsys.readouterr().out
        assert "Resolver stopped" in out
        assert "Mode: subscription" in out
        assert "Watermark: 12" in out
