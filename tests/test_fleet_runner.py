"""Tests for the fleet runner."""

import asyncio

import pytest

from playtime_farmer.core.config import FarmerSettings, FleetConfig
from playtime_farmer.core.exceptions import ShutdownTimeoutError
from playtime_farmer.models import OrchestratorState, ProviderErrorKind
from playtime_farmer.services.farming.fleet_runner import FleetRunner
from playtime_farmer.utils.encryption import encrypt_password


@pytest.fixture
def settings(tmp_path):
    return FarmerSettings(
        _env_file=None,
        data_dir=tmp_path,
        checkpoint_interval=60,
        login_timeout=0.5,
        challenge_timeout=0.5,
        shutdown_timeout=5,
        account_cooldown_seconds=0,
        max_rate_limit_cycles=1,
    )


def fleet(*account_ids, start_delay=0.0, **account_options):
    return FleetConfig.model_validate(
        {
            "start_delay": start_delay,
            "reconnect": {"max_attempts": 2, "initial_delay": 0.001, "max_delay": 0.01},
            "accounts": [
                {"account_id": a, "password": "pw", "activities": [1, 2], **account_options}
                for a in account_ids
            ],
        }
    )


class ProviderPool:
    """Factory handing out pre-built providers in account start order."""

    def __init__(self, *providers):
        self.providers = list(providers)
        self.handed_out = []

    def __call__(self):
        provider = self.providers.pop(0)
        self.handed_out.append(provider)
        return provider


def all_logged_on(runner, count):
    return len(runner.orchestrators) == count and all(
        o.state is OrchestratorState.LOGGED_ON for o in runner.orchestrators.values()
    )


class TestFleetRun:
    """Starting and stopping accounts."""

    @pytest.mark.asyncio
    async def test_runs_every_account_until_shutdown(
        self, settings, make_provider, until, log_messages
    ):
        pool = ProviderPool(make_provider(), make_provider())
        runner = FleetRunner(fleet("alice", "bob"), pool, settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 2))
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)

        assert set(outcomes) == {"alice", "bob"}
        assert all(o.status == "stopped" and o.ok for o in outcomes.values())
        assert all(p.disconnect_calls == 1 for p in pool.handed_out)
        assert any("below the recommended" in m for m in log_messages)

    @pytest.mark.asyncio
    async def test_failing_account_does_not_affect_others(self, settings, make_provider, until):
        bad = make_provider().queue(("error", ProviderErrorKind.INVALID_CREDENTIALS))
        good = make_provider()
        runner = FleetRunner(fleet("bad", "good"), ProviderPool(bad, good), settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: "bad" in runner.outcomes and runner.get("good") is not None)
        await until(lambda: runner.get("good").state is OrchestratorState.LOGGED_ON)
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)

        assert outcomes["bad"].status == "auth_failed"
        assert outcomes["bad"].error["error"] == "AuthenticationError"
        assert not outcomes["bad"].ok
        assert outcomes["good"].status == "stopped"

    @pytest.mark.asyncio
    async def test_run_ends_when_every_account_stops(self, settings, make_provider):
        provider = make_provider()
        provider.default_response = ("error", ProviderErrorKind.ACCOUNT_LOCKED)
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), settings)

        outcomes = await asyncio.wait_for(runner.run(), timeout=3)

        assert outcomes["alice"].status == "auth_failed"
        assert not runner.shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_shutdown_during_staggered_connect_logs_nobody_on(
        self, settings, make_provider, until
    ):
        provider = make_provider()
        provider.connect_delay = 0.2
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: provider.connect_calls == 1)
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)
        await asyncio.sleep(0.3)

        assert outcomes["alice"].status == "stopped"
        assert provider.log_on_calls == []
        assert not provider.connected

    @pytest.mark.asyncio
    async def test_staggered_start_skips_unstarted_accounts(self, settings, make_provider, until):
        pool = ProviderPool(make_provider(), make_provider())
        runner = FleetRunner(fleet("alice", "bob", start_delay=30), pool, settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 1))
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)

        assert outcomes["alice"].status == "stopped"
        assert outcomes["bob"].status == "not_started"
        assert len(pool.handed_out) == 1

    @pytest.mark.asyncio
    async def test_hook_sees_every_orchestrator(self, settings, make_provider, until):
        seen = []
        runner = FleetRunner(
            fleet("alice"),
            ProviderPool(make_provider()),
            settings,
            on_orchestrator=lambda o: seen.append(o.account_id),
        )

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 1))
        runner.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

        assert seen == ["alice"]


class TestRateLimits:
    """Account-level cool-down."""

    @pytest.mark.asyncio
    async def test_rate_limited_account_restarts_after_cooldown(
        self, settings, make_provider, until, log_messages
    ):
        provider = make_provider().queue(("error", ProviderErrorKind.RATE_LIMITED))
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 1))
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)

        assert len(provider.log_on_calls) == 2
        assert outcomes["alice"].status == "stopped"
        assert any("cooling down" in m for m in log_messages)

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up_after_cycles(self, settings, make_provider):
        provider = make_provider()
        provider.default_response = ("error", ProviderErrorKind.RATE_LIMITED)
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), settings)

        outcomes = await asyncio.wait_for(runner.run(), timeout=3)

        assert outcomes["alice"].status == "rate_limited"
        assert len(provider.log_on_calls) == 2


class TestPasswords:
    """Encrypted passwords in the fleet file."""

    @pytest.mark.asyncio
    async def test_encrypted_password_is_decrypted(self, settings, make_provider, until):
        provider = make_provider()
        config = fleet("alice", password=encrypt_password("s3cret"), password_encrypted=True)
        runner = FleetRunner(config, ProviderPool(provider), settings)

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 1))
        runner.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

        assert provider.log_on_calls[0].password == "s3cret"

    @pytest.mark.asyncio
    async def test_undecryptable_password_fails_account(self, settings, make_provider):
        provider = make_provider()
        config = fleet("alice", password_encrypted=True)
        runner = FleetRunner(config, ProviderPool(provider), settings)

        outcomes = await asyncio.wait_for(runner.run(), timeout=3)

        assert outcomes["alice"].status == "failed"
        assert outcomes["alice"].error["error"] == "ConfigurationError"
        assert provider.connect_calls == 0


class TestShutdown:
    """Bounded shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_without_accounts_started(self, settings):
        runner = FleetRunner(fleet("alice"), ProviderPool(), settings)

        await runner.shutdown(timeout=1)

        assert runner.shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_hanging_disconnect_times_out_and_cancels_accounts(
        self, settings, make_provider, until, log_messages
    ):
        provider = make_provider()
        quick = settings.model_copy(update={"shutdown_timeout": 0.1})
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), quick)
        raised = []
        shutdown = runner.shutdown

        async def recording_shutdown(timeout=None):
            try:
                await shutdown(timeout)
            except ShutdownTimeoutError as e:
                raised.append(e)
                raise

        runner.shutdown = recording_shutdown

        task = asyncio.create_task(runner.run())
        await until(lambda: all_logged_on(runner, 1))
        account_task = runner._tasks["alice"]
        provider.disconnect_delay = 30
        runner.request_shutdown()
        outcomes = await asyncio.wait_for(task, timeout=3)

        assert len(raised) == 1
        assert account_task.cancelled()
        assert outcomes["alice"].status == "cancelled"
        assert any("Shutdown timeout" in m for m in log_messages)

    @pytest.mark.asyncio
    async def test_shutdown_raises_when_accounts_do_not_finish(
        self, settings, make_provider, until
    ):
        provider = make_provider()
        runner = FleetRunner(fleet("alice"), ProviderPool(provider), settings)
        task = asyncio.create_task(runner._run_account(runner.config.accounts[0], 0))
        runner._tasks["alice"] = task
        await until(lambda: all_logged_on(runner, 1))
        provider.disconnect_delay = 30

        with pytest.raises(ShutdownTimeoutError):
            await runner.shutdown(timeout=0.05)

        await asyncio.wait({task}, timeout=1)
        assert task.cancelled()
        assert runner.outcomes["alice"].status == "cancelled"
        runner.get("alice").close()
