"""Tests for the interactive farming console."""

import asyncio

import pytest
import pytest_asyncio

from playtime_farmer.core.config import FarmerSettings, FleetConfig
from playtime_farmer.models import AccountIdentity, ActivityEntry, OrchestratorState
from playtime_farmer.services.console.farming_console import HELP_TEXT, FarmingConsole
from playtime_farmer.services.farming.fleet_runner import FleetRunner


@pytest.fixture
def runner(tmp_path):
    config = FleetConfig.model_validate(
        {"accounts": [{"account_id": "A", "password": "pw", "activities": [1, 2]}]}
    )
    return FleetRunner(config, lambda: None, FarmerSettings(_env_file=None, data_dir=tmp_path))


@pytest.fixture
def output():
    return []


@pytest.fixture
def console(runner, output):
    return FarmingConsole(runner, write=output.append)


@pytest_asyncio.fixture
async def logged_on(runner, console, make_orchestrator):
    """Orchestrator for account A registered with the runner and logged on."""
    orchestrator = make_orchestrator()
    runner.orchestrators["A"] = orchestrator
    console.attach(orchestrator)
    await orchestrator.login()
    yield orchestrator
    await orchestrator.stop()


class TestCommands:
    """Command dispatch."""

    @pytest.mark.asyncio
    async def test_status(self, console, logged_on, clock, output):
        clock.advance(1800)

        await console.handle_line("status")

        assert output[0] == "[A] logged_on"
        assert output[1] == "    1: 0.50h (50%)"
        assert output[2] == "    2: 0.50h"

    @pytest.mark.asyncio
    async def test_add_and_remove(self, console, logged_on, fake_provider, output):
        await console.handle_line("add 3 Some Game")
        await console.handle_line("add 3")
        await console.handle_line("remove 1 @A")
        await console.handle_line("remove 1")

        assert output == [
            "[A] added 3",
            "[A] 3 is already farmed",
            "[A] removed 1",
            "[A] 1 is not farmed",
        ]
        assert fake_provider.activity_calls[-1] == [ActivityEntry(2), ActivityEntry(3, "Some Game")]

    @pytest.mark.asyncio
    async def test_stop_single_account(self, console, logged_on):
        await console.handle_line("stop @A")
        assert logged_on.state is OrchestratorState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_stop_all_requests_shutdown(self, console, runner, output):
        await console.handle_line("stop")

        assert runner.shutdown_event.is_set()
        assert output == ["Stopping all accounts..."]

    @pytest.mark.asyncio
    async def test_reconnect(self, console, logged_on, fake_provider, until):
        await console.handle_line("reconnect")
        await until(lambda: fake_provider.connect_calls == 2)

    @pytest.mark.asyncio
    async def test_unknown_account(self, console, logged_on, output):
        await console.handle_line("status @nobody")
        assert output == ["Unknown account 'nobody'"]

    @pytest.mark.asyncio
    async def test_several_accounts_need_target(
        self, console, runner, logged_on, make_orchestrator, make_provider, output
    ):
        runner.orchestrators["B"] = make_orchestrator(
            identity=AccountIdentity("B"), provider=make_provider()
        )

        await console.handle_line("add 9")

        assert output == ["Several accounts are running; add @account to the command"]

    @pytest.mark.asyncio
    async def test_help_and_unknown(self, console, output):
        await console.handle_line("help")
        await console.handle_line("dance")
        await console.handle_line("   ")

        assert output == [HELP_TEXT, "Unknown command 'dance'. Type 'help' for the list."]


class TestEvents:
    """Messages for orchestrator events."""

    @pytest.mark.asyncio
    async def test_target_reached_message(self, console, logged_on, clock, output):
        clock.advance(3600)
        await logged_on.tick()

        assert "[A] 1 reached 1h" in output

    @pytest.mark.asyncio
    async def test_challenge_answered_from_next_line(
        self, runner, console, make_orchestrator, fake_provider, until, output
    ):
        fake_provider.queue(("challenge", "mail.example"), ("logged_on", None))
        orchestrator = make_orchestrator(challenge_timeout=2.0)
        runner.orchestrators["A"] = orchestrator
        console.attach(orchestrator)

        login = asyncio.create_task(orchestrator.login())
        await until(lambda: orchestrator.challenge_pending)
        await console.handle_line("GX7P2\n")
        await asyncio.wait_for(login, timeout=1)

        assert output == ["[A] Enter the one-time code sent to mail.example:"]
        assert fake_provider.submitted_codes == ["GX7P2"]
        assert orchestrator.state is OrchestratorState.LOGGED_ON
        await orchestrator.stop()


class TestRun:
    """Line loop."""

    @pytest.mark.asyncio
    async def test_invalid_input_is_reported(self, console, output):
        lines = asyncio.Queue()
        for line in ("add", "add abc", "help", None):
            lines.put_nowait(line)

        await asyncio.wait_for(console.run(lines), timeout=1)

        assert output[0] == "Invalid input: usage: add <id> [label]"
        assert output[1].startswith("Invalid input: invalid literal for int()")
        assert output[2] == HELP_TEXT
