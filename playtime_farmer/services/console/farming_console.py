"""Interactive command line while farming.

Commands (optionally suffixed with ``@account``):

    status              show state, connection and progress
    stop                stop one account, or every account
    add <id> [label]    start farming another activity
    remove <id>         stop farming an activity
    reconnect           drop the session and reconnect now
    help                list commands

While an account waits for a one-time code, the next input line is used as
that code.
"""

import asyncio
import sys
import threading
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from loguru import logger

from playtime_farmer.services.events import FarmerEvent
from playtime_farmer.services.farming.fleet_runner import FleetRunner
from playtime_farmer.services.session.session_orchestrator import SessionOrchestrator

HELP_TEXT = """Commands:
  status [@account]              show state and progress
  stop [@account]                stop one account (or all)
  add <id> [label] [@account]    farm another activity
  remove <id> [@account]         stop farming an activity
  reconnect [@account]           reconnect immediately
  help                           show this help"""

Writer = Callable[[str], None]


def start_stdin_reader(loop: asyncio.AbstractEventLoop) -> "asyncio.Queue[Optional[str]]":
    """
    Read stdin lines on a daemon thread.

    Returns:
        Queue receiving each line, then None at end of input
    """
    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def _reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)

    threading.Thread(target=_reader, name="console-reader", daemon=True).start()
    return queue


class FarmingConsole:
    """Routes console input to the orchestrators of a fleet."""

    def __init__(self, runner: FleetRunner, write: Writer = print):
        self.runner = runner
        self.write = write
        self._challenges: Deque[str] = deque()
        self._commands: Dict[str, Callable[[List[str], Optional[str]], Awaitable[None]]] = {
            "status": self._cmd_status,
            "stop": self._cmd_stop,
            "add": self._cmd_add,
            "remove": self._cmd_remove,
            "reconnect": self._cmd_reconnect,
            "help": self._cmd_help,
        }

    def attach(self, orchestrator: SessionOrchestrator) -> None:
        """Subscribe to the events the console reports; used as the fleet hook."""
        events = orchestrator.events
        events.subscribe(FarmerEvent.CHALLENGE_REQUIRED, self._on_challenge)
        events.subscribe(
            FarmerEvent.TARGET_REACHED,
            lambda entry, hours: self.write(
                f"[{orchestrator.account_id}] {entry.activity_id} reached {hours:g}h"
            ),
        )
        events.subscribe(
            FarmerEvent.RECONNECT_FAILED,
            lambda reason: self.write(
                f"[{orchestrator.account_id}] gave up reconnecting ({reason or 'unknown'})"
            ),
        )

    def _on_challenge(
        self, account_id: str, domain_hint: Optional[str], was_last_code_wrong: bool
    ) -> None:
        if account_id not in self._challenges:
            self._challenges.append(account_id)
        where = f" sent to {domain_hint}" if domain_hint else ""
        prefix = "Code rejected. " if was_last_code_wrong else ""
        self.write(f"[{account_id}] {prefix}Enter the one-time code{where}:")

    async def run(self, lines: "asyncio.Queue[Optional[str]]") -> None:
        """Process lines until end of input or shutdown."""
        while not self.runner.shutdown_event.is_set():
            line = await lines.get()
            if line is None:
                return
            try:
                await self.handle_line(line)
            except ValueError as e:
                self.write(f"Invalid input: {e}")

    async def handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return

        while self._challenges:
            orchestrator = self.runner.get(self._challenges.popleft())
            if orchestrator is not None and orchestrator.challenge_pending:
                orchestrator.submit_code(line)
                return

        args, target = self._split_target(line.split())
        command = args[0].lower()
        handler = self._commands.get(command)
        if handler is None:
            self.write(f"Unknown command '{command}'. Type 'help' for the list.")
            return
        await handler(args[1:], target)

    @staticmethod
    def _split_target(parts: List[str]) -> Tuple[List[str], Optional[str]]:
        if len(parts) > 1 and parts[-1].startswith("@"):
            return parts[:-1], parts[-1][1:]
        return parts, None

    def _select(self, target: Optional[str], allow_all: bool) -> List[SessionOrchestrator]:
        orchestrators = self.runner.orchestrators
        if target is not None:
            orchestrator = orchestrators.get(target)
            if orchestrator is None:
                self.write(f"Unknown account '{target}'")
                return []
            return [orchestrator]
        if allow_all or len(orchestrators) == 1:
            return list(orchestrators.values())
        self.write("Several accounts are running; add @account to the command")
        return []

    async def _cmd_status(self, args: List[str], target: Optional[str]) -> None:
        for orchestrator in self._select(target, allow_all=True):
            s = orchestrator.status()
            line = f"[{s.account_id}] {s.state.value}"
            if s.reconnecting:
                line += f" (reconnect attempt {s.attempt}/{s.max_attempts})"
            self.write(line)
            for entry in s.activities:
                hours = s.accumulated_hours.get(entry.activity_id, 0.0)
                pct = s.progress.get(entry.activity_id)
                label = f" {entry.label}" if entry.label else ""
                suffix = f" ({pct:.0f}%)" if pct is not None else ""
                self.write(f"    {entry.activity_id}{label}: {hours:.2f}h{suffix}")
            if s.last_error:
                self.write(f"    last error: {s.last_error}")

    async def _cmd_stop(self, args: List[str], target: Optional[str]) -> None:
        if target is None:
            self.write("Stopping all accounts...")
            self.runner.request_shutdown()
            return
        for orchestrator in self._select(target, allow_all=False):
            await orchestrator.stop(reason="user")

    async def _cmd_add(self, args: List[str], target: Optional[str]) -> None:
        if not args:
            raise ValueError("usage: add <id> [label]")
        activity_id = int(args[0])
        label = " ".join(args[1:])
        for orchestrator in self._select(target, allow_all=False):
            if await orchestrator.add_activity(activity_id, label):
                self.write(f"[{orchestrator.account_id}] added {activity_id}")
            else:
                self.write(f"[{orchestrator.account_id}] {activity_id} is already farmed")

    async def _cmd_remove(self, args: List[str], target: Optional[str]) -> None:
        if not args:
            raise ValueError("usage: remove <id>")
        activity_id = int(args[0])
        for orchestrator in self._select(target, allow_all=False):
            if await orchestrator.remove_activity(activity_id):
                self.write(f"[{orchestrator.account_id}] removed {activity_id}")
            else:
                self.write(f"[{orchestrator.account_id}] {activity_id} is not farmed")

    async def _cmd_reconnect(self, args: List[str], target: Optional[str]) -> None:
        for orchestrator in self._select(target, allow_all=False):
            if not await orchestrator.reconnect_now():
                self.write(f"[{orchestrator.account_id}] nothing to reconnect")

    async def _cmd_help(self, args: List[str], target: Optional[str]) -> None:
        self.write(HELP_TEXT)


async def run_console(runner: FleetRunner, console: FarmingConsole) -> None:
    """Run the console until the fleet finishes; used alongside ``FleetRunner.run``."""
    lines = start_stdin_reader(asyncio.get_running_loop())
    try:
        await console.run(lines)
    except Exception:
        logger.exception("Console stopped unexpectedly")
