"""Per-resource mutating-action lock registry.

Guards buy/list/update/cancel style actions against duplicate submission
(a double click must not send two transactions). Each action runs under a
``LockKey(kind, resource_id)``:

* if the key is already busy the call returns ``False`` immediately and
  the action is never invoked;
* otherwise the key is marked busy before the first suspension point,
  the action is awaited, and the key is released on every exit path.

Busy state is kept as ``resource_id -> {kind, ...}`` so ``is_busy(id)``
answers "is anything in flight for this item" with a set lookup, e.g. a
pending buy disables cancel for the same item.

Usage::

    locks = ConcurrencyLockRegistry(reporter=banner)
    ran = await locks.run_exclusive(buy_key(42), lambda: actions.buy("42"))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from market_sync.errors import is_user_rejection

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockKey:
    kind: str
    resource_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "resource_id", str(self.resource_id))

    def __str__(self) -> str:
        return f"{self.kind}:{self.resource_id}"

    @classmethod
    def parse(cls, raw: Union["LockKey", str]) -> "LockKey":
        if isinstance(raw, LockKey):
            return raw
        text = str(raw or "")
        kind, sep, resource_id = text.partition(":")
        if not sep:
            # Bare keys lock the resource under an anonymous kind.
            return cls(kind="", resource_id=text)
        return cls(kind=kind, resource_id=resource_id)


def buy_key(resource_id: object) -> LockKey:
    return LockKey("buy", str(resource_id))


def list_key(resource_id: object) -> LockKey:
    return LockKey("list", str(resource_id))


def update_key(resource_id: object) -> LockKey:
    return LockKey("update", str(resource_id))


def cancel_key(resource_id: object) -> LockKey:
    return LockKey("cancel", str(resource_id))


class ActionReporter(Protocol):
    """Receives user-facing outcome messages (status banner, log, ...)."""

    def info(self, message: str) -> None: ...

    def error(self, exc: BaseException, message: str) -> None: ...


@dataclass
class LockStats:
    total_started: int = 0
    total_completed: int = 0
    total_ignored: int = 0
    total_user_rejected: int = 0
    total_failed: int = 0

    def reset(self) -> None:
        self.total_started = 0
        self.total_completed = 0
        self.total_ignored = 0
        self.total_user_rejected = 0
        self.total_failed = 0


@dataclass(frozen=True)
class LockSnapshot:
    busy_keys: tuple[str, ...]
    busy_resources: int
    total_started: int
    total_completed: int
    total_ignored: int


class ConcurrencyLockRegistry:
    def __init__(
        self,
        reporter: Optional[ActionReporter] = None,
        failure_message: str = "The operation failed",
        rejection_message: str = "Operation cancelled by the user",
    ) -> None:
        self._reporter = reporter
        self._failure_message = failure_message
        self._rejection_message = rejection_message
        self._busy: Dict[str, Set[str]] = {}
        self._stats = LockStats()

    @property
    def stats(self) -> LockStats:
        return self._stats

    def is_key_busy(self, key: Union[LockKey, str]) -> bool:
        lock = LockKey.parse(key)
        return lock.kind in self._busy.get(lock.resource_id, ())

    def is_busy(self, resource_id: object) -> bool:
        """True while any action kind is in flight for ``resource_id``."""
        return bool(self._busy.get(str(resource_id)))

    def busy_kinds(self, resource_id: object) -> frozenset[str]:
        return frozenset(self._busy.get(str(resource_id), ()))

    async def run_exclusive(
        self,
        key: Union[LockKey, str],
        action: Callable[[], Awaitable[object]],
    ) -> bool:
        """Run ``action`` unless ``key`` is already busy.

        Returns True when the action ran to completion, False when it was
        skipped as a duplicate or failed. Failures are reported, not
        raised; cancellation releases the lock and propagates.
        """
        lock = LockKey.parse(key)
        # Check-and-set happens before the first await.
        if not self._acquire(lock):
            self._stats.total_ignored += 1
            LOGGER.info("[lock] ignored (already busy): %s", lock)
            return False

        self._stats.total_started += 1
        LOGGER.info("[lock] start: %s", lock)
        try:
            await action()
        except asyncio.CancelledError:
            LOGGER.info("[lock] cancelled: %s", lock)
            raise
        except Exception as exc:
            self._report_failure(lock, exc)
            return False
        finally:
            self._release(lock)
            LOGGER.info("[lock] release: %s", lock)

        self._stats.total_completed += 1
        LOGGER.info("[lock] done: %s", lock)
        return True

    def snapshot(self) -> LockSnapshot:
        keys = sorted(
            str(LockKey(kind, resource_id))
            for resource_id, kinds in self._busy.items()
            for kind in kinds
        )
        return LockSnapshot(
            busy_keys=tuple(keys),
            busy_resources=len(self._busy),
            total_started=self._stats.total_started,
            total_completed=self._stats.total_completed,
            total_ignored=self._stats.total_ignored,
        )

    def _acquire(self, lock: LockKey) -> bool:
        kinds = self._busy.setdefault(lock.resource_id, set())
        if lock.kind in kinds:
            return False
        kinds.add(lock.kind)
        return True

    def _release(self, lock: LockKey) -> None:
        kinds = self._busy.get(lock.resource_id)
        if kinds is None:
            return
        kinds.discard(lock.kind)
        if not kinds:
            del self._busy[lock.resource_id]

    def _report_failure(self, lock: LockKey, exc: Exception) -> None:
        if is_user_rejection(exc):
            self._stats.total_user_rejected += 1
            LOGGER.info("[lock] rejected by user: %s", lock)
            if self._reporter is not None:
                self._reporter.info(self._rejection_message)
            return
        self._stats.total_failed += 1
        LOGGER.warning("[lock] error: %s %s", lock, exc)
        if self._reporter is not None:
            self._reporter.error(exc, self._failure_message)
