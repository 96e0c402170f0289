"""Bounded exponential-backoff reconnection."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from playtime_farmer.constants import LogEmoji, Reconnect
from playtime_farmer.core.exceptions import FarmerError
from playtime_farmer.models import ConnectionState, SupervisorState
from playtime_farmer.services.events import EventBus, FarmerEvent

ReconnectFn = Callable[[], Awaitable[Optional[bool]]]


def _current_task() -> Optional["asyncio.Task[Any]"]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ReconnectSupervisor:
    """
    Drives retries of a caller-supplied reconnect action.

    States: IDLE -> RECONNECTING -> IDLE (``handle_success``) or FAILED.
    Attempt ``n`` (0-based) fires after ``min(base_delay * multiplier**n, max_delay)``
    seconds. Success is signalled from outside, typically when the provider
    reports ``logged_on``.
    """

    def __init__(
        self,
        events: EventBus,
        max_attempts: int = Reconnect.MAX_ATTEMPTS,
        base_delay: float = Reconnect.INITIAL_DELAY_SECONDS,
        max_delay: float = Reconnect.MAX_DELAY_SECONDS,
        backoff_multiplier: float = Reconnect.BACKOFF_MULTIPLIER,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the supervisor.

        Args:
            events: Bus receiving reconnecting / reconnected / reconnect_failed
            max_attempts: Tries before giving up
            base_delay: Delay before the first try in seconds
            max_delay: Upper bound of any delay in seconds
            backoff_multiplier: Growth factor between tries
            sleep: Awaitable sleep used for the backoff wait

        Raises:
            ValueError: If the backoff parameters are out of range
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        if backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

        self.events = events
        self.connection = ConnectionState(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            backoff_multiplier=backoff_multiplier,
        )
        self._sleep = sleep
        self._state = SupervisorState.IDLE
        self._fn: Optional[ReconnectFn] = None
        self._task: Optional["asyncio.Task[None]"] = None
        # Bumped whenever pending work must be abandoned
        self._generation = 0
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def attempt(self) -> int:
        return self.connection.attempt

    def compute_delay(self, attempt: int) -> float:
        """Backoff delay before the try following ``attempt`` completed tries."""
        c = self.connection
        return min(c.base_delay * c.backoff_multiplier**attempt, c.max_delay)

    def mark_disconnected(self, reason: Optional[str] = None) -> None:
        self.connection.connected = False
        self.connection.last_disconnect_reason = reason

    def start_reconnect(self, fn: ReconnectFn) -> bool:
        """
        Begin retrying ``fn``.

        ``fn`` signals failure by raising or returning False.

        Args:
            fn: Async reconnect action

        Returns:
            True if a retry cycle was started, False if one is already running
            or the supervisor has failed
        """
        if self._state is SupervisorState.RECONNECTING:
            logger.debug("Reconnect already in progress, ignoring request")
            return False
        if self._state is SupervisorState.FAILED:
            logger.warning("Reconnect supervisor has failed; reset it before reconnecting")
            return False

        self._fn = fn
        self._state = SupervisorState.RECONNECTING
        self.connection.reconnecting = True
        self._schedule_next()
        return True

    def _schedule_next(self) -> None:
        delay = self.compute_delay(self.connection.attempt)
        upcoming = self.connection.attempt + 1
        logger.info(
            f"{LogEmoji.RETRY} Reconnect attempt {upcoming}/{self.connection.max_attempts} "
            f"in {delay:.1f}s"
        )
        self.events.publish(FarmerEvent.RECONNECTING, upcoming, self.connection.max_attempts, delay)
        self._task = asyncio.get_running_loop().create_task(
            self._run_attempt(delay, self._generation), name=f"reconnect-{upcoming}"
        )

    async def _run_attempt(self, delay: float, generation: int) -> None:
        await self._sleep(delay)
        if generation != self._generation or self._state is not SupervisorState.RECONNECTING:
            return

        fn = self._fn
        if fn is None:
            return
        self.connection.attempt += 1
        try:
            result = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation == self._generation:
                logger.warning(f"Reconnect attempt {self.connection.attempt} failed: {e}")
                self.handle_failure(e)
            return

        if generation != self._generation:
            return
        if result is False:
            self.handle_failure()
        elif self._state is SupervisorState.RECONNECTING:
            self.handle_success()

    def handle_failure(self, error: Optional[BaseException] = None) -> None:
        """
        Evaluate a failed try: schedule the next one or give up.

        Non-recoverable errors give up immediately.
        """
        if self._state is not SupervisorState.RECONNECTING:
            return
        if error is not None:
            self.last_error = error

        if isinstance(error, FarmerError) and not error.recoverable:
            logger.error(f"{LogEmoji.ERROR} Reconnect aborted, error is not recoverable: {error}")
            self._fail()
        elif self.connection.attempt >= self.connection.max_attempts:
            logger.error(
                f"{LogEmoji.ERROR} Giving up after {self.connection.attempt} reconnect attempts"
            )
            self._fail()
        else:
            self._schedule_next()

    def _fail(self) -> None:
        self._state = SupervisorState.FAILED
        self.connection.reconnecting = False
        self._task = None
        self.events.publish(FarmerEvent.RECONNECT_FAILED, self.connection.last_disconnect_reason)

    def handle_success(self) -> bool:
        """
        Signal that the connection is back.

        Returns:
            True if a retry cycle was in progress
        """
        self.connection.connected = True
        if self._state is not SupervisorState.RECONNECTING:
            self.connection.attempt = 0
            return False

        attempts = self.connection.attempt
        self._generation += 1
        self._task = None
        self._state = SupervisorState.IDLE
        self.connection.reconnecting = False
        self.connection.attempt = 0
        self.last_error = None
        logger.info(f"{LogEmoji.SUCCESS} Reconnected after {attempts} attempt(s)")
        self.events.publish(FarmerEvent.RECONNECTED, attempts)
        return True

    def stop_reconnect(self) -> bool:
        """
        Cancel any pending try and return to IDLE.

        No scheduled try runs after this returns.

        Returns:
            True if a retry cycle was in progress
        """
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        was_reconnecting = self._state is SupervisorState.RECONNECTING
        self._state = SupervisorState.IDLE
        self.connection.reconnecting = False
        self._fn = None
        return was_reconnecting

    def reset(self) -> None:
        """Forget all history; used at the start of every user-initiated login."""
        self.stop_reconnect()
        self.connection.attempt = 0
        self.connection.connected = False
        self.connection.last_disconnect_reason = None
        self.last_error = None
