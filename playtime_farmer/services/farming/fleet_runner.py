"""Runs one independently supervised session per configured account."""

import asyncio
from typing import Callable, Dict, List, Optional

from loguru import logger

from playtime_farmer.constants import Delays, LogEmoji
from playtime_farmer.core.config.config_loader import resolve_password
from playtime_farmer.core.config.config_models import AccountConfig, FleetConfig
from playtime_farmer.core.config.settings import FarmerSettings
from playtime_farmer.core.exceptions import (
    AuthenticationError,
    FarmerError,
    RateLimitError,
    ShutdownTimeoutError,
)
from playtime_farmer.core.infra.retry import get_rate_limit_cooldown
from playtime_farmer.core.logger import account_ctx
from playtime_farmer.models import AccountOutcome
from playtime_farmer.services.events import EventBus
from playtime_farmer.services.farming.reconnect_supervisor import ReconnectSupervisor
from playtime_farmer.services.session.provider import ProviderFactory
from playtime_farmer.services.session.session_orchestrator import SessionOrchestrator

OrchestratorHook = Callable[[SessionOrchestrator], None]


class FleetRunner:
    """
    Starts every account as its own task with a staggered start.

    One account failing never affects the others. ``shutdown()`` stops every
    orchestrator and waits, bounded by ``settings.shutdown_timeout``, until
    all of them have logged out.
    """

    def __init__(
        self,
        config: FleetConfig,
        provider_factory: ProviderFactory,
        settings: FarmerSettings,
        shutdown_event: Optional[asyncio.Event] = None,
        on_orchestrator: Optional[OrchestratorHook] = None,
    ):
        """
        Initialize the fleet.

        Args:
            config: Validated fleet configuration
            provider_factory: Builds one session provider per account
            settings: Process settings (timeouts, data directory, cool-down)
            shutdown_event: Event that ends the run when set
            on_orchestrator: Called with every orchestrator before it logs in
        """
        self.config = config
        self.provider_factory = provider_factory
        self.settings = settings
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.on_orchestrator = on_orchestrator
        self.orchestrators: Dict[str, SessionOrchestrator] = {}
        self.outcomes: Dict[str, AccountOutcome] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    def build_orchestrator(self, account: AccountConfig) -> SessionOrchestrator:
        """
        Wire provider, bus, supervisor and orchestrator for one account.

        Raises:
            ConfigurationError: If the account password cannot be decrypted
        """
        password = resolve_password(account, self.settings.get_encryption_key())
        backoff = self.config.reconnect_for(account)
        events = EventBus(name=f"account:{account.account_id}")
        supervisor = ReconnectSupervisor(
            events,
            max_attempts=backoff.max_attempts,
            base_delay=backoff.initial_delay,
            max_delay=backoff.max_delay,
            backoff_multiplier=backoff.multiplier,
        )
        return SessionOrchestrator(
            account.to_identity(),
            self.provider_factory(),
            account.to_activities(),
            account.targets,
            password=password,
            custom_label=account.custom_label,
            presence=account.presence,
            data_dir=self.settings.data_dir,
            events=events,
            supervisor=supervisor,
            checkpoint_interval=self.settings.checkpoint_interval,
            login_timeout=self.settings.login_timeout,
            challenge_timeout=self.settings.challenge_timeout,
        )

    async def run(self) -> Dict[str, AccountOutcome]:
        """
        Run every account until it stops or shutdown is requested.

        Returns:
            Outcome per account id
        """
        accounts = self.config.accounts
        delay = self.config.start_delay
        if len(accounts) > 1 and delay < Delays.FLEET_START_MIN_RECOMMENDED_SECONDS:
            logger.warning(
                f"{LogEmoji.WARNING} Start delay {delay}s is below the recommended "
                f"{Delays.FLEET_START_MIN_RECOMMENDED_SECONDS}s; the provider may throttle logins"
            )

        logger.info(f"{LogEmoji.START} Starting {len(accounts)} account(s)")
        for index, account in enumerate(accounts):
            self._tasks[account.account_id] = asyncio.create_task(
                self._run_account(account, index * delay),
                name=f"account-{account.account_id}",
            )

        all_done = asyncio.gather(*self._tasks.values(), return_exceptions=True)
        shutdown_wait = asyncio.ensure_future(self.shutdown_event.wait())
        try:
            await asyncio.wait({all_done, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not all_done.done():
                try:
                    await self.shutdown()
                except ShutdownTimeoutError as e:
                    logger.error(f"Shutdown timeout: {e}")
            await asyncio.wait({all_done})
        finally:
            shutdown_wait.cancel()
            for orchestrator in self.orchestrators.values():
                orchestrator.close()

        self._log_summary()
        return dict(self.outcomes)

    async def _sleep_unless_shutdown(self, seconds: float) -> bool:
        """Sleep; return True if shutdown was requested meanwhile."""
        if seconds <= 0:
            return self.shutdown_event.is_set()
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _cooldown_sleep(self, seconds: float) -> None:
        logger.warning(f"{LogEmoji.WAITING} Rate limited, cooling down for {seconds:.0f}s")
        await self._sleep_unless_shutdown(seconds)

    async def _run_account(self, account: AccountConfig, start_after: float) -> None:
        account_id = account.account_id
        account_ctx.set(account_id)

        if await self._sleep_unless_shutdown(start_after):
            self.outcomes[account_id] = AccountOutcome(account_id, "not_started")
            return

        try:
            orchestrator = self.build_orchestrator(account)
        except FarmerError as e:
            logger.error(f"{LogEmoji.ERROR} Cannot start account: {e}")
            self.outcomes[account_id] = AccountOutcome(account_id, "failed", error=e.to_dict())
            return

        self.orchestrators[account_id] = orchestrator
        if self.on_orchestrator is not None:
            self.on_orchestrator(orchestrator)

        status: str = "stopped"
        error: Optional[FarmerError] = None
        try:
            cooldown = get_rate_limit_cooldown(
                cooldown=self.settings.account_cooldown_seconds,
                cycles=self.settings.max_rate_limit_cycles,
                sleep=self._cooldown_sleep,
            )
            async for attempt in cooldown:
                with attempt:
                    if self.shutdown_event.is_set():
                        break
                    await orchestrator.run()
        except RateLimitError as e:
            status, error = "rate_limited", e
        except AuthenticationError as e:
            status, error = "auth_failed", e
        except FarmerError as e:
            status, error = "failed", e
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as e:
            logger.exception(f"{LogEmoji.ERROR} Account task crashed: {e}")
            status = "crashed"
            await orchestrator.stop(reason="crashed")
        finally:
            self.outcomes[account_id] = AccountOutcome(
                account_id,
                status,
                error=error.to_dict() if error else None,
                accumulated_seconds=orchestrator.accumulator.ledger,
            )

        if error is not None:
            logger.error(f"{LogEmoji.ERROR} Account ended: {error}")
        else:
            logger.info(f"{LogEmoji.STOP} Account {status}")

    def get(self, account_id: str) -> Optional[SessionOrchestrator]:
        return self.orchestrators.get(account_id)

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop every orchestrator and wait for all accounts to log out.

        Args:
            timeout: Seconds to wait; defaults to ``settings.shutdown_timeout``

        Raises:
            ShutdownTimeoutError: If some accounts did not finish in time
        """
        timeout = timeout if timeout is not None else self.settings.shutdown_timeout
        self.shutdown_event.set()
        logger.info(f"{LogEmoji.STOP} Stopping {len(self.orchestrators)} account(s)...")

        stops = [
            asyncio.ensure_future(o.stop(reason="shutdown")) for o in self.orchestrators.values()
        ]
        pending_work: List["asyncio.Future"] = stops + list(self._tasks.values())
        if not pending_work:
            return

        _, pending = await asyncio.wait(pending_work, timeout=timeout)
        if pending:
            for task in pending:
                task.cancel()
            raise ShutdownTimeoutError(
                f"{len(pending)} shutdown step(s) did not finish within {timeout}s",
                timeout=int(timeout),
            )
        logger.info(f"{LogEmoji.SUCCESS} All accounts logged out")

    def _log_summary(self) -> None:
        for account_id, outcome in self.outcomes.items():
            hours = sum(outcome.accumulated_seconds.values()) / 3600
            logger.bind(account=account_id).info(
                f"Outcome: {outcome.status} ({hours:.2f}h on {len(outcome.accumulated_seconds)} "
                "tracked activities)"
            )
