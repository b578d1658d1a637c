"""
Deferred per-call actions ("wait N ms, then act").

Every delayed action is an asyncio.Task registered under the call's id,
so ending the call cancels whatever is still pending.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class DeferredTaskRegistry:

    def __init__(self):
        self._tasks: Dict[str, Set[asyncio.Task]] = {}

    def schedule(
        self,
        call_id: str,
        delay: float,
        action: Callable[[], Awaitable[None]],
        name: str = "deferred"
    ) -> asyncio.Task:
        """Run `action()` after `delay` seconds unless cancelled first"""

        async def runner():
            try:
                if delay > 0:
                    await asyncio.sleep(delay)
                await action()
            except asyncio.CancelledError:
                logger.debug(f"Deferred '{name}' cancelled for call {call_id}")
                raise
            except Exception as e:
                logger.error(f"Deferred '{name}' failed for call {call_id}: {e}", exc_info=True)

        task = asyncio.create_task(runner(), name=f"{name}-{call_id}")
        self._tasks.setdefault(call_id, set()).add(task)
        task.add_done_callback(lambda t: self._discard(call_id, t))
        return task

    def _discard(self, call_id: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(call_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(call_id, None)

    def cancel_all(self, call_id: str) -> int:
        """
        Cancel pending actions for a call. The task running this method
        (when it is itself a deferred action) is left alone.
        """
        tasks = self._tasks.pop(call_id, set())
        current = asyncio.current_task()
        cancelled = 0
        for task in tasks:
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1

        if cancelled:
            logger.info(f"Cancelled {cancelled} deferred action(s) for call {call_id}")
        return cancelled

    def pending(self, call_id: str) -> int:
        return sum(1 for t in self._tasks.get(call_id, ()) if not t.done())

    async def shutdown(self) -> None:
        tasks = [t for group in self._tasks.values() for t in group if not t.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
