"""Crash-safe per-activity elapsed time ledger."""

import math
import os
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Union

from loguru import logger

from playtime_farmer.models import TargetHours
from playtime_farmer.utils.atomic_io import atomic_write_json, read_json

SECONDS_PER_HOUR = 3600.0


class PlaytimeAccumulator:
    """
    Accumulates connected time per activity for one account.

    The ledger maps activity id to accumulated seconds and is persisted
    atomically on every checkpoint, so a crash loses at most one checkpoint
    interval. Time spent disconnected is never counted: ``suspend()`` closes
    the running intervals at the disconnect, ``reconcile_on_reconnect()``
    opens new ones at the reconnect.
    """

    def __init__(
        self,
        account_id: str,
        ledger_path: Union[str, Path],
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the accumulator and load any existing ledger.

        Args:
            account_id: Account the ledger belongs to (used in log lines)
            ledger_path: JSON ledger file
            clock: Monotonic time source in seconds
        """
        self.account_id = account_id
        self.ledger_path = Path(ledger_path)
        self._clock = clock
        self._ledger: Dict[int, float] = self._load()
        # activity_id -> start of the interval not yet added to the ledger
        self._running: Dict[int, float] = {}
        self._suspended: List[int] = []

    def _load(self) -> Dict[int, float]:
        if not self.ledger_path.exists():
            return {}

        try:
            data = read_json(self.ledger_path)
        except (OSError, ValueError) as e:
            self._quarantine(f"unreadable ({e})")
            return {}

        if not isinstance(data, dict):
            self._quarantine("not a JSON object")
            return {}

        ledger: Dict[int, float] = {}
        for key, value in data.items():
            try:
                activity_id = int(key)
                seconds = float(value)
            except (TypeError, ValueError):
                self._quarantine(f"bad entry {key!r}")
                return {}
            if not math.isfinite(seconds):
                self._quarantine(f"bad value for {key!r}")
                return {}
            ledger[activity_id] = max(0.0, seconds)

        if ledger:
            logger.info(
                f"Recovered playtime ledger with {len(ledger)} activities "
                f"({sum(ledger.values()) / SECONDS_PER_HOUR:.2f}h total)"
            )
        return ledger

    def _quarantine(self, reason: str) -> None:
        corrupt_path = self.ledger_path.with_name(self.ledger_path.name + ".corrupt")
        try:
            os.replace(self.ledger_path, corrupt_path)
        except OSError as e:
            logger.error(f"Corrupt ledger {self.ledger_path} could not be moved aside: {e}")
            return
        logger.warning(
            f"Ledger {self.ledger_path.name} is {reason}; moved to {corrupt_path.name}, "
            "starting from zero"
        )

    def _persist(self) -> bool:
        payload = {str(k): v for k, v in self._ledger.items()}
        try:
            atomic_write_json(self.ledger_path, payload)
        except OSError as e:
            # Farming continues; the in-memory ledger stays authoritative
            logger.warning(f"Could not persist ledger {self.ledger_path}: {e}")
            return False
        return True

    def begin(self, activity_ids: Iterable[int]) -> List[int]:
        """
        Start clocks for activities that are not already running.

        Accumulated seconds are never reset.

        Args:
            activity_ids: Activities being broadcast

        Returns:
            Activities whose clock was started by this call
        """
        now = self._clock()
        started = []
        for activity_id in activity_ids:
            activity_id = int(activity_id)
            if activity_id in self._running:
                continue
            self._running[activity_id] = now
            self._ledger.setdefault(activity_id, 0.0)
            if activity_id in self._suspended:
                self._suspended.remove(activity_id)
            started.append(activity_id)
        self._persist()
        return started

    def checkpoint(self) -> Dict[int, float]:
        """
        Fold elapsed time of running activities into the ledger and persist it.

        Calling it twice in a row with no time passing changes nothing.

        Returns:
            Copy of the ledger after the checkpoint
        """
        now = self._clock()
        for activity_id, started_at in self._running.items():
            elapsed = max(0.0, now - started_at)
            self._ledger[activity_id] = self._ledger.get(activity_id, 0.0) + elapsed
            self._running[activity_id] = now
        self._persist()
        return dict(self._ledger)

    def completed(self, targets: TargetHours) -> List[int]:
        """
        Running activities whose accumulated time reached their target.

        Args:
            targets: activity_id -> target hours

        Returns:
            Activity ids with ``seconds >= hours * 3600``
        """
        done = []
        for activity_id in self._running:
            target_hours = targets.get(activity_id)
            if target_hours is None:
                continue
            if self._ledger.get(activity_id, 0.0) >= float(target_hours) * SECONDS_PER_HOUR:
                done.append(activity_id)
        return done

    def drop(self, activity_ids: Iterable[int]) -> None:
        """Stop tracking activities and remove their ledger entries."""
        for activity_id in activity_ids:
            activity_id = int(activity_id)
            self._running.pop(activity_id, None)
            self._ledger.pop(activity_id, None)
            if activity_id in self._suspended:
                self._suspended.remove(activity_id)
        self._persist()

    def suspend(self) -> None:
        """Checkpoint now and stop every clock until ``reconcile_on_reconnect``."""
        if not self._running:
            return
        self.checkpoint()
        for activity_id in self._running:
            if activity_id not in self._suspended:
                self._suspended.append(activity_id)
        self._running.clear()

    def reconcile_on_reconnect(self) -> List[int]:
        """
        Restart the clocks stopped by ``suspend`` at the current time.

        Returns:
            Activities that were resumed
        """
        now = self._clock()
        resumed = []
        for activity_id in self._suspended:
            if activity_id not in self._running:
                self._running[activity_id] = now
                resumed.append(activity_id)
        self._suspended.clear()
        return resumed

    def stop(self) -> Dict[int, float]:
        """Final checkpoint; all clocks stop and nothing stays suspended."""
        ledger = self.checkpoint()
        self._running.clear()
        self._suspended.clear()
        return ledger

    def seconds(self, activity_id: int) -> float:
        """Accumulated seconds including the open interval, if any."""
        total = self._ledger.get(activity_id, 0.0)
        started_at = self._running.get(activity_id)
        if started_at is not None:
            total += max(0.0, self._clock() - started_at)
        return total

    def progress(self, targets: TargetHours) -> Dict[int, float]:
        """
        Informational completion percentage per targeted activity.

        Returns:
            activity_id -> percent (capped at 100)
        """
        result = {}
        for activity_id, target_hours in targets.items():
            if activity_id not in self._ledger or target_hours <= 0:
                continue
            percent = self.seconds(activity_id) / (float(target_hours) * SECONDS_PER_HOUR) * 100
            result[activity_id] = min(100.0, percent)
        return result

    @property
    def ledger(self) -> Dict[int, float]:
        return dict(self._ledger)

    @property
    def running(self) -> List[int]:
        return list(self._running)

    @property
    def suspended(self) -> List[int]:
        return list(self._suspended)
