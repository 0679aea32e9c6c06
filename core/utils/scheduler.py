"""
Deferred action scheduling with cancellation.

Used for fire-and-forget work that must run some fixed delay after a primary
action (e.g. a protective stop-loss order after an entry leg). The caller does
not await the action; it keeps a token and may cancel the action while it is
still pending.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from core.logging import get_logger
from core.utils.ids import generate_trade_id

logger = get_logger(__name__, component="position_manager")


@dataclass
class CancellationToken:
    """Handle for one scheduled action."""

    action_id: str
    name: str
    group: Optional[str] = None
    scheduled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _cancelled: bool = False
    _started: bool = False
    _task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def started(self) -> bool:
        return self._started

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Cancel the action if it has not started running. Returns True if cancelled."""
        if self._cancelled or self._started or self.done:
            return False
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        return True


class DeferredActionScheduler:
    """Runs coroutines after a delay as background asyncio tasks."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep
        self._pending: Dict[str, CancellationToken] = {}

    def schedule(
        self,
        delay_seconds: float,
        action: Callable[[], Awaitable[object]],
        name: str,
        group: Optional[str] = None,
    ) -> CancellationToken:
        """Schedule `action` to run after `delay_seconds`.

        Must be called from inside a running event loop. Exceptions raised by
        the action are logged, never propagated to the scheduler's caller.
        """
        token = CancellationToken(action_id=generate_trade_id(), name=name, group=group)
        token._task = asyncio.create_task(self._run(token, delay_seconds, action))
        self._pending[token.action_id] = token
        logger.info("Deferred action scheduled", action=name, group=group,
                    delay_seconds=delay_seconds, action_id=token.action_id)
        return token

    async def _run(self, token: CancellationToken, delay_seconds: float,
                   action: Callable[[], Awaitable[object]]) -> None:
        try:
            await self._sleep(delay_seconds)
            if token.cancelled:
                return
            # Once started the action runs to completion; cancel() no longer applies
            token._started = True
            await action()
            logger.info("Deferred action completed", action=token.name, action_id=token.action_id)
        except asyncio.CancelledError:
            logger.info("Deferred action cancelled", action=token.name, action_id=token.action_id)
        except Exception as e:
            logger.error("Deferred action failed", action=token.name,
                         action_id=token.action_id, error=str(e))
        finally:
            self._pending.pop(token.action_id, None)

    def pending(self, group: Optional[str] = None) -> List[CancellationToken]:
        return [
            t for t in self._pending.values()
            if group is None or t.group == group
        ]

    def cancel_group(self, group: str) -> int:
        """Cancel every action in a group that has not started. Returns the number cancelled."""
        cancelled = sum(1 for token in self.pending(group) if token.cancel())
        if cancelled:
            logger.info("Deferred actions cancelled", group=group, count=cancelled)
        return cancelled

    async def shutdown(self) -> None:
        """Cancel actions still waiting out their delay and wait for running ones to finish."""
        tokens = list(self._pending.values())
        for token in tokens:
            token.cancel()
        tasks = [t._task for t in tokens if t._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
