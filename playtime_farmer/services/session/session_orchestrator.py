"""Account-level session lifecycle."""

import asyncio
import inspect
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from loguru import logger

from playtime_farmer.constants import Intervals, LogEmoji, Timeouts
from playtime_farmer.core.exceptions import (
    AuthenticationError,
    ChallengeRequiredError,
    ChallengeTimeoutError,
    FarmerError,
    InvalidStateTransitionError,
    LoginTimeoutError,
    NetworkError,
    RateLimitError,
    ReconnectExhaustedError,
    SessionExpiredError,
)
from playtime_farmer.models import (
    AccountIdentity,
    AccountInfo,
    ActivityEntry,
    LogOnDetails,
    OrchestratorState,
    OrchestratorStatus,
    PresenceState,
    ProviderError,
    ProviderErrorKind,
    SupervisorState,
    TargetHours,
)
from playtime_farmer.services.events import EventBus, FarmerEvent, ProviderEvent
from playtime_farmer.services.farming.playtime_accumulator import (
    SECONDS_PER_HOUR,
    PlaytimeAccumulator,
)
from playtime_farmer.services.farming.reconnect_supervisor import ReconnectSupervisor
from playtime_farmer.services.session.provider import SessionProvider
from playtime_farmer.services.session.session_cache import SessionCache, safe_file_stem
from playtime_farmer.utils.otp import generate_one_time_code

S = OrchestratorState

# Every state may fall back to LOGGED_OUT through stop()
_TRANSITIONS: Dict[OrchestratorState, Set[OrchestratorState]] = {
    S.LOGGED_OUT: {S.CONNECTING},
    S.CONNECTING: {S.CHALLENGE_REQUIRED, S.LOGGED_ON, S.DISCONNECTED, S.RECONNECTING, S.FAILED},
    S.CHALLENGE_REQUIRED: {S.CONNECTING, S.DISCONNECTED, S.RECONNECTING, S.FAILED},
    S.LOGGED_ON: {S.DISCONNECTED},
    S.DISCONNECTED: {S.RECONNECTING, S.FAILED},
    S.RECONNECTING: {S.CONNECTING, S.CHALLENGE_REQUIRED, S.LOGGED_ON, S.FAILED},
    S.FAILED: set(),
}

_AUTH_KINDS = {
    ProviderErrorKind.INVALID_CREDENTIALS,
    ProviderErrorKind.ACCOUNT_LOCKED,
    ProviderErrorKind.ACCESS_DENIED,
}


def map_provider_error(error: ProviderError) -> FarmerError:
    """Translate a provider-reported error into the farmer exception taxonomy."""
    if error.kind is ProviderErrorKind.INVALID_SESSION_TOKEN:
        return SessionExpiredError(error.message)
    if error.kind in _AUTH_KINDS:
        return AuthenticationError(error.message, code=error.kind.value)
    if error.kind is ProviderErrorKind.RATE_LIMITED:
        return RateLimitError(error.message, retry_after=error.retry_after)
    return NetworkError(error.message)


class SessionOrchestrator:
    """
    Runs one account: login, broadcast, accumulation, reconnects and teardown.

    The login handshake is a state machine (see ``_TRANSITIONS``). Provider
    events drive the transitions; the orchestrator republishes them in
    normalized form on its own ``events`` bus.
    """

    def __init__(
        self,
        identity: AccountIdentity,
        provider: SessionProvider,
        activities: Iterable[ActivityEntry],
        targets: Optional[TargetHours] = None,
        *,
        password: Optional[str] = None,
        custom_label: Optional[str] = None,
        presence: PresenceState = PresenceState.ONLINE,
        data_dir: Union[str, Path] = "data",
        events: Optional[EventBus] = None,
        cache: Optional[SessionCache] = None,
        accumulator: Optional[PlaytimeAccumulator] = None,
        supervisor: Optional[ReconnectSupervisor] = None,
        checkpoint_interval: float = Intervals.CHECKPOINT_SECONDS,
        login_timeout: float = Timeouts.LOGIN_SECONDS,
        challenge_timeout: float = Timeouts.CHALLENGE_SECONDS,
        provider_timeout: float = Timeouts.PROVIDER_TEARDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the orchestrator.

        Args:
            identity: Account to log in as
            provider: Session provider owned by this orchestrator
            activities: Activities to broadcast
            targets: activity_id -> target hours
            password: Account password (not needed while a cached session is valid)
            custom_label: Free-text status broadcast ahead of the activities
            presence: Presence state set after login
            data_dir: Directory for the session cache and the ledger
            events: Bus to publish on (a new one when omitted)
            cache: Session cache (defaults to one under ``data_dir``)
            accumulator: Ledger (defaults to ``ledger_<account>.json`` under ``data_dir``)
            supervisor: Reconnect supervisor publishing on the same bus
            checkpoint_interval: Seconds between ticks
            login_timeout: Seconds to wait for a login outcome
            challenge_timeout: Seconds to wait for an interactive one-time code
            provider_timeout: Seconds allowed for each broadcast / teardown call
            clock: Monotonic clock used by the default accumulator
        """
        self.identity = identity
        self.account_id = identity.account_id
        self.provider = provider
        self.targets: Dict[int, float] = dict(targets or {})
        self.custom_label = custom_label
        self.presence = PresenceState(presence)
        self._password = password
        self._otp_seed = identity.otp_seed

        data_dir = Path(data_dir)
        if supervisor is not None and events is None:
            events = supervisor.events
        self.events = events or EventBus(name=f"orchestrator:{self.account_id}")
        self.cache = cache or SessionCache(data_dir)
        self.accumulator = accumulator or PlaytimeAccumulator(
            self.account_id,
            data_dir / f"ledger_{safe_file_stem(self.account_id)}.json",
            clock=clock,
        )
        self.supervisor = supervisor or ReconnectSupervisor(self.events)
        if self.supervisor.events is not self.events:
            raise ValueError("supervisor must publish on the orchestrator event bus")

        self.checkpoint_interval = checkpoint_interval
        self.login_timeout = login_timeout
        self.challenge_timeout = challenge_timeout
        self.provider_timeout = provider_timeout

        self._activities: List[ActivityEntry] = []
        for entry in activities:
            if all(a.activity_id != entry.activity_id for a in self._activities):
                self._activities.append(entry)

        self._log = logger.bind(account=self.account_id)
        self._state = OrchestratorState.LOGGED_OUT
        self._phase_changed = asyncio.Event()
        self._stopped = asyncio.Event()
        self._outcome: Optional["asyncio.Future[AccountInfo]"] = None
        self._pending_submit: Optional[Callable[[str], Any]] = None
        self._tick_task: Optional["asyncio.Task[None]"] = None
        self._login_task: Optional["asyncio.Task[None]"] = None
        # Bumped by every stop(); login steps started before it must not continue
        self._stop_generation = 0
        self._background: Set["asyncio.Task[Any]"] = set()
        self._active = False
        self._stopping = False
        self._terminal_error: Optional[FarmerError] = None
        self._last_error: Optional[FarmerError] = None

        self._unsubscribers = [
            provider.events.subscribe(ProviderEvent.CONNECTED, self._on_connected),
            provider.events.subscribe(
                ProviderEvent.CHALLENGE_REQUIRED, self._on_challenge_required
            ),
            provider.events.subscribe(ProviderEvent.LOGGED_ON, self._on_logged_on),
            provider.events.subscribe(ProviderEvent.ERROR, self._on_error),
            provider.events.subscribe(ProviderEvent.DISCONNECTED, self._on_disconnected),
            self.events.subscribe(FarmerEvent.RECONNECT_FAILED, self._on_reconnect_failed),
        ]

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def activities(self) -> List[ActivityEntry]:
        return list(self._activities)

    @property
    def terminal_error(self) -> Optional[FarmerError]:
        return self._terminal_error

    def _transition(self, target: OrchestratorState) -> None:
        if target is self._state:
            return
        allowed = target is S.LOGGED_OUT or target in _TRANSITIONS[self._state]
        if not allowed:
            raise InvalidStateTransitionError(self._state.value, target.value)
        self._log.debug(f"State {self._state.value} -> {target.value}")
        self._state = target
        self._phase_changed.set()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, password: Optional[str] = None, otp_seed: Optional[str] = None) -> None:
        """
        Start a user-initiated login.

        A cached session token is tried first. Recoverable failures hand over to
        the reconnect supervisor and this method returns; use ``wait_stopped``
        or ``run`` to follow the session.

        Args:
            password: Overrides the configured password
            otp_seed: Overrides the configured one-time code seed

        Raises:
            AuthenticationError: Credentials rejected or a challenge nobody can answer
            RateLimitError: The provider throttled the account
            InvalidStateTransitionError: The orchestrator is not logged out
        """
        if password is not None:
            self._password = password
        if otp_seed is not None:
            self._otp_seed = otp_seed
        if self._state is not S.LOGGED_OUT:
            raise InvalidStateTransitionError(self._state.value, S.CONNECTING.value)

        self.supervisor.reset()
        self._active = True
        self._stopping = False
        self._terminal_error = None
        self._last_error = None
        self._stopped.clear()

        generation = self._stop_generation
        self._login_task = asyncio.ensure_future(self._attempt_login())
        try:
            await self._login_task
        except asyncio.CancelledError:
            if generation == self._stop_generation:
                raise
            return
        except FarmerError as e:
            self._last_error = e
            if self._stopping or generation != self._stop_generation:
                return
            if not e.recoverable:
                await self._fail_terminal(e)
                raise
            self._log.warning(f"{LogEmoji.WARNING} Login failed ({e}), retrying with backoff")
            await self._abort_attempt()
            self.supervisor.mark_disconnected(str(e))
            self._transition(S.DISCONNECTED)
            self._transition(S.RECONNECTING)
            self.supervisor.start_reconnect(self._reconnect_once)
            return
        finally:
            self._login_task = None

        if generation == self._stop_generation:
            await self._on_session_ready()

    async def run(self) -> None:
        """
        Log in and farm until stopped.

        Raises:
            AuthenticationError, RateLimitError, ReconnectExhaustedError: The
                session ended because of this error
        """
        await self.login()
        await self._stopped.wait()
        if self._terminal_error is not None:
            raise self._terminal_error

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def _ensure_not_stopped(self, generation: int) -> None:
        if self._stopping or generation != self._stop_generation:
            raise NetworkError("Login attempt aborted by stop")

    async def _attempt_login(self) -> None:
        generation = self._stop_generation
        if self._state is not S.RECONNECTING:
            self._transition(S.CONNECTING)
        self._log.info(f"{LogEmoji.START} Connecting")
        self.events.publish(FarmerEvent.CONNECTING, self.account_id)

        try:
            await asyncio.wait_for(self.provider.connect(), timeout=self.login_timeout)
        except asyncio.TimeoutError:
            raise LoginTimeoutError(self.login_timeout)
        except OSError as e:
            raise NetworkError(f"Connect failed: {e}") from e
        self._ensure_not_stopped(generation)

        token = self.cache.load(self.account_id)
        if token is not None:
            try:
                await self._log_on(LogOnDetails(self.account_id, session_token=token))
                return
            except SessionExpiredError:
                self._ensure_not_stopped(generation)
                self.cache.clear(self.account_id)
                self._log.info(f"{LogEmoji.KEY} Cached session rejected, using credentials")

        if not self._password:
            raise AuthenticationError(
                "No valid cached session and no password configured", code="missing_password"
            )

        code = None
        if self._otp_seed:
            code = self._derive_code()
        await self._log_on(
            LogOnDetails(self.account_id, password=self._password, one_time_code=code)
        )

    async def _log_on(self, details: LogOnDetails) -> AccountInfo:
        outcome: "asyncio.Future[AccountInfo]" = asyncio.get_running_loop().create_future()
        self._outcome = outcome
        try:
            await asyncio.wait_for(self.provider.log_on(details), timeout=self.login_timeout)
            return await self._await_outcome(outcome)
        except asyncio.TimeoutError:
            raise LoginTimeoutError(self.login_timeout)
        finally:
            if self._outcome is outcome:
                self._outcome = None
            if not outcome.done():
                outcome.cancel()

    async def _await_outcome(self, outcome: "asyncio.Future[AccountInfo]") -> AccountInfo:
        # The deadline restarts whenever the phase changes (challenge <-> connecting)
        while True:
            in_challenge = self._state is S.CHALLENGE_REQUIRED
            timeout = self.challenge_timeout if in_challenge else self.login_timeout
            self._phase_changed.clear()
            phase = asyncio.ensure_future(self._phase_changed.wait())
            try:
                done, _ = await asyncio.wait(
                    {outcome, phase}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                phase.cancel()

            if outcome in done:
                if outcome.cancelled():
                    raise NetworkError("Login attempt aborted")
                return outcome.result()
            if phase in done:
                continue
            if in_challenge:
                self._pending_submit = None
                raise ChallengeTimeoutError(timeout)
            raise LoginTimeoutError(timeout)

    def _derive_code(self) -> str:
        try:
            return generate_one_time_code(self._otp_seed or "", self.identity.otp_format)
        except ValueError as e:
            raise AuthenticationError(f"Cannot derive one-time code: {e}", code="bad_otp_seed")

    async def _abort_attempt(self) -> None:
        self._pending_submit = None
        try:
            await asyncio.wait_for(self.provider.disconnect(), timeout=self.provider_timeout)
        except asyncio.TimeoutError:
            self._log.warning("Provider disconnect timed out")
        except Exception as e:
            self._log.warning(f"Provider disconnect failed: {e}")

    async def _reconnect_once(self) -> bool:
        try:
            await self._attempt_login()
        except FarmerError as e:
            self._last_error = e
            await self._abort_attempt()
            if self._state in (S.CONNECTING, S.CHALLENGE_REQUIRED):
                self._transition(S.RECONNECTING)
            raise
        await self._on_session_ready()
        return True

    async def _fail_terminal(self, error: FarmerError) -> None:
        self._terminal_error = error
        self._log.error(f"{LogEmoji.ERROR} Session failed: {error}")
        if self._state is not S.LOGGED_OUT:
            self._transition(S.FAILED)
        await self.stop(reason=type(error).__name__)

    # ------------------------------------------------------------------
    # Challenge
    # ------------------------------------------------------------------

    def submit_code(self, code: str) -> bool:
        """
        Answer a pending interactive challenge.

        Returns:
            False if no challenge is pending
        """
        submit = self._pending_submit
        if self._state is not S.CHALLENGE_REQUIRED or submit is None:
            return False
        self._pending_submit = None
        self._transition(S.CONNECTING)
        self._call_submit(submit, code.strip())
        return True

    @property
    def challenge_pending(self) -> bool:
        return self._state is S.CHALLENGE_REQUIRED and self._pending_submit is not None

    def _call_submit(self, submit: Callable[[str], Any], code: str) -> None:
        result = submit(code)
        if inspect.isawaitable(result):
            self._spawn(result, "submit-code")

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    def _on_connected(self) -> None:
        self._log.debug("Transport connected")

    def _on_challenge_required(
        self,
        domain_hint: Optional[str],
        submit_code: Callable[[str], Any],
        was_last_code_wrong: bool = False,
    ) -> None:
        if self._state not in (S.CONNECTING, S.RECONNECTING, S.CHALLENGE_REQUIRED):
            self._log.warning(f"Ignoring challenge in state {self._state.value}")
            return

        if self._otp_seed and not was_last_code_wrong:
            try:
                code = self._derive_code()
            except AuthenticationError as e:
                self._fail_outcome(e)
                return
            self._log.info(f"{LogEmoji.KEY} Submitting derived one-time code")
            self._call_submit(submit_code, code)
            return

        if not self.events.has_subscribers(FarmerEvent.CHALLENGE_REQUIRED):
            self._fail_outcome(ChallengeRequiredError())
            return

        hint = f" ({domain_hint})" if domain_hint else ""
        if was_last_code_wrong:
            self._log.warning(f"{LogEmoji.KEY} Last one-time code was rejected{hint}")
        else:
            self._log.info(f"{LogEmoji.KEY} One-time code required{hint}")
        self._transition(S.CHALLENGE_REQUIRED)
        self._pending_submit = submit_code
        self.events.publish(
            FarmerEvent.CHALLENGE_REQUIRED, self.account_id, domain_hint, was_last_code_wrong
        )

    def _on_logged_on(self, info: AccountInfo) -> None:
        if self._stopping or self._state not in (S.CONNECTING, S.RECONNECTING):
            self._log.warning(f"Ignoring logged_on in state {self._state.value}")
            return

        self._transition(S.LOGGED_ON)
        name = info.display_name or info.account_id
        self._log.success(f"{LogEmoji.SUCCESS} Logged on as {name}")
        if info.session_token:
            self.cache.save(self.account_id, info.session_token)
        self.supervisor.handle_success()
        self.accumulator.reconcile_on_reconnect()
        self.accumulator.begin(a.activity_id for a in self._activities)
        self.events.publish(FarmerEvent.LOGGED_ON, info)

        outcome = self._outcome
        if outcome is not None and not outcome.done():
            outcome.set_result(info)
        else:
            # Provider re-established the session on its own
            self._spawn(self._on_session_ready(), "session-ready")

    def _on_error(self, error: ProviderError) -> None:
        exc = map_provider_error(error)
        self._last_error = exc
        self._log.warning(f"Provider error ({error.kind.value}): {error.message}")
        self.events.publish(FarmerEvent.ERROR, exc)
        if isinstance(exc, SessionExpiredError) and self._outcome is None:
            self.cache.clear(self.account_id)
        self._fail_outcome(exc)

    def _on_disconnected(
        self, reason_code: Optional[Union[int, str]] = None, reason_text: Optional[str] = None
    ) -> None:
        reason = reason_text or (str(reason_code) if reason_code is not None else "unknown")
        self.supervisor.mark_disconnected(reason)
        self.accumulator.suspend()
        self._cancel_tick()

        if self._outcome is not None and not self._outcome.done():
            self._fail_outcome(NetworkError(f"Disconnected during login: {reason}"))
            return
        if self._state is not S.LOGGED_ON:
            return

        self._log.warning(f"{LogEmoji.WARNING} Disconnected: {reason}")
        self._transition(S.DISCONNECTED)
        self.events.publish(FarmerEvent.DISCONNECTED, reason_code, reason_text)
        if self._stopping or not self._active:
            return
        self._transition(S.RECONNECTING)
        self.supervisor.start_reconnect(self._reconnect_once)

    def _on_reconnect_failed(self, reason: Optional[str]) -> None:
        if self._stopping:
            return
        last = self.supervisor.last_error
        if isinstance(last, FarmerError) and not last.recoverable:
            error: FarmerError = last
        else:
            error = ReconnectExhaustedError(self.supervisor.connection.attempt, reason)
        self._terminal_error = error
        self._log.error(f"{LogEmoji.ERROR} {error}")
        if self._state is not S.LOGGED_OUT:
            self._transition(S.FAILED)
        self._spawn(self.stop(reason="reconnect_failed"), "stop")

    def _fail_outcome(self, error: FarmerError) -> None:
        outcome = self._outcome
        if outcome is not None and not outcome.done():
            outcome.set_exception(error)

    # ------------------------------------------------------------------
    # Farming
    # ------------------------------------------------------------------

    def _broadcast_entries(self) -> List[ActivityEntry]:
        entries = list(self._activities)
        if self.custom_label and entries:
            entries.insert(0, ActivityEntry(0, self.custom_label))
        return entries

    async def _provider_call(self, what: str, call: Awaitable[Any]) -> bool:
        try:
            await asyncio.wait_for(call, timeout=self.provider_timeout)
        except asyncio.TimeoutError:
            self._log.warning(f"Provider {what} timed out")
            return False
        except Exception as e:
            self._log.warning(f"Provider {what} failed: {e}")
            return False
        return True

    async def _broadcast(self) -> None:
        await self._provider_call(
            "set_activities", self.provider.set_activities(self._broadcast_entries())
        )

    async def _on_session_ready(self) -> None:
        if self._state is not S.LOGGED_ON:
            return
        await self._broadcast()
        await self._provider_call(
            "set_presence_state", self.provider.set_presence_state(self.presence)
        )
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(
                self._tick_loop(), name=f"tick-{self.account_id}"
            )
        ids = ", ".join(str(a.activity_id) for a in self._activities)
        self._log.info(f"{LogEmoji.GAME} Farming {len(self._activities)} activities: {ids}")

    async def _tick_loop(self) -> None:
        while not self._stopping and self._state is S.LOGGED_ON:
            await asyncio.sleep(self.checkpoint_interval)
            await self.tick()

    async def tick(self) -> List[ActivityEntry]:
        """
        Checkpoint the ledger and retire activities that reached their target.

        Returns:
            Activities removed by this tick
        """
        if self._state is not S.LOGGED_ON:
            return []

        self.accumulator.checkpoint()
        done = set(self.accumulator.completed(self.targets))
        if not done:
            self._log_progress()
            return []

        removed = [a for a in self._activities if a.activity_id in done]
        self._activities = [a for a in self._activities if a.activity_id not in done]
        self.accumulator.drop(done)
        for entry in removed:
            hours = self.targets.get(entry.activity_id, 0.0)
            self._log.success(
                f"{LogEmoji.FOUND} Target of {hours:g}h reached for {entry.activity_id}"
            )
            self.events.publish(FarmerEvent.TARGET_REACHED, entry, hours)

        if not self._activities:
            self._log.info(f"{LogEmoji.SUCCESS} Every activity reached its target")
            await self.stop(reason="targets_reached")
            return removed

        self.events.publish(FarmerEvent.ACTIVITIES_CHANGED, self.activities)
        await self._broadcast()
        return removed

    def _log_progress(self) -> None:
        progress = self.accumulator.progress(self.targets)
        parts = []
        for entry in self._activities:
            hours = self.accumulator.seconds(entry.activity_id) / SECONDS_PER_HOUR
            part = f"{entry.activity_id}={hours:.2f}h"
            if entry.activity_id in progress:
                part += f" ({progress[entry.activity_id]:.0f}%)"
            parts.append(part)
        self._log.info(f"Progress: {', '.join(parts)}")

    async def add_activity(self, activity_id: int, label: str = "") -> bool:
        """
        Start farming another activity.

        Returns:
            False if it is already being farmed
        """
        activity_id = int(activity_id)
        if activity_id <= 0:
            raise ValueError("activity_id must be positive")
        if any(a.activity_id == activity_id for a in self._activities):
            return False
        self._activities.append(ActivityEntry(activity_id, label))
        if self._state is S.LOGGED_ON:
            self.accumulator.begin([activity_id])
            await self._broadcast()
        self._log.info(f"Added activity {activity_id}")
        self.events.publish(FarmerEvent.ACTIVITIES_CHANGED, self.activities)
        return True

    async def remove_activity(self, activity_id: int) -> bool:
        """
        Stop farming an activity and drop its ledger entry.

        Removing the last activity stops the session.

        Returns:
            False if the activity was not being farmed
        """
        activity_id = int(activity_id)
        if all(a.activity_id != activity_id for a in self._activities):
            return False
        self._activities = [a for a in self._activities if a.activity_id != activity_id]
        self.accumulator.drop([activity_id])
        self._log.info(f"Removed activity {activity_id}")
        self.events.publish(FarmerEvent.ACTIVITIES_CHANGED, self.activities)
        if not self._activities and self._active:
            await self.stop(reason="no_activities")
        elif self._state is S.LOGGED_ON:
            await self._broadcast()
        return True

    async def reconnect_now(self) -> bool:
        """
        Drop the current session (or pending backoff) and reconnect right away.

        Returns:
            False when there is nothing to reconnect
        """
        if self._stopping or not self._active:
            return False

        if self._state is S.RECONNECTING:
            self.supervisor.stop_reconnect()
        elif self._state is S.LOGGED_ON:
            self._cancel_tick()
            self.accumulator.suspend()
            self.supervisor.mark_disconnected("manual reconnect")
            self._transition(S.DISCONNECTED)
            self.events.publish(FarmerEvent.DISCONNECTED, None, "manual reconnect")
            await self._abort_attempt()
            self._transition(S.RECONNECTING)
        else:
            return False

        self._log.info(f"{LogEmoji.RETRY} Manual reconnect requested")
        self.supervisor.connection.attempt = 0
        return self.supervisor.start_reconnect(self._reconnect_once)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _cancel_tick(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _spawn(self, awaitable: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def _done(t: "asyncio.Task[Any]") -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._log.opt(exception=t.exception()).error(f"Background task '{name}' failed")

        task.add_done_callback(_done)

    async def stop(self, reason: str = "stopped") -> None:
        """
        Stop farming and log out.

        Cancels the tick and any pending reconnect, checkpoints the ledger,
        clears the broadcast, goes offline and disconnects. Calling it again
        waits for the first call to finish.
        """
        if self._stopping:
            await self._stopped.wait()
            return
        if not self._active and self._state is S.LOGGED_OUT:
            return

        self._stopping = True
        self._stop_generation += 1
        was_logged_on = self._state is S.LOGGED_ON
        self._log.info(f"{LogEmoji.STOP} Stopping ({reason})")

        self._cancel_tick()
        login_task = self._login_task
        if login_task is not None and not login_task.done():
            login_task.cancel()
        self.supervisor.stop_reconnect()
        self.accumulator.stop()
        self._pending_submit = None
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()

        if was_logged_on:
            await self._provider_call("set_activities", self.provider.set_activities([]))
            await self._provider_call(
                "set_presence_state", self.provider.set_presence_state(PresenceState.OFFLINE)
            )
        await self._provider_call("disconnect", self.provider.disconnect())

        self._transition(S.LOGGED_OUT)
        self._active = False
        self.events.publish(FarmerEvent.STOPPED, reason)
        self._stopped.set()
        self._stopping = False

    def status(self) -> OrchestratorStatus:
        """Snapshot of the current state for display."""
        conn = self.supervisor.connection
        hours = {
            a.activity_id: self.accumulator.seconds(a.activity_id) / SECONDS_PER_HOUR
            for a in self._activities
        }
        return OrchestratorStatus(
            account_id=self.account_id,
            state=self._state,
            connected=conn.connected,
            reconnecting=self.supervisor.state is SupervisorState.RECONNECTING,
            attempt=conn.attempt,
            max_attempts=conn.max_attempts,
            activities=self.activities,
            accumulated_hours=hours,
            progress=self.accumulator.progress(self.targets),
            last_error=str(self._last_error) if self._last_error else None,
        )

    def close(self) -> None:
        """Remove every subscription this orchestrator holds."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        for task in list(self._background):
            task.cancel()
        self.events.dispose()
