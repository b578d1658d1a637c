"""
Silence Watchdog

One timer per call while we wait for the customer to speak. Each expiry
counts a consecutive silence: below the limit the call is re-prompted,
at the limit it is given up on. Any transcript resets the count.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

RepromptHandler = Callable[[str, int], Awaitable[None]]
GiveUpHandler = Callable[[str, int], Awaitable[None]]


class SilenceWatchdog:

    REPROMPTS = [
        "Hey, are you still there?",
        "Can you hear me okay?",
        "Did I lose you for a second?",
    ]

    def __init__(self, timeout: float = 8.0, max_consecutive_silences: int = 3):
        self._timeout = timeout
        self._max_silences = max_consecutive_silences
        self._on_reprompt: Optional[RepromptHandler] = None
        self._on_give_up: Optional[GiveUpHandler] = None
        self._timers: Dict[str, Tuple[int, asyncio.Task]] = {}
        self._silences: Dict[str, int] = {}
        self._generation = 0

    def bind(self, on_reprompt: RepromptHandler, on_give_up: GiveUpHandler) -> None:
        self._on_reprompt = on_reprompt
        self._on_give_up = on_give_up

    def reprompt_text(self, silence_count: int) -> str:
        return self.REPROMPTS[(silence_count - 1) % len(self.REPROMPTS)]

    def arm(self, call_id: str) -> None:
        """(Re)start the timer; the consecutive-silence count is kept"""
        self._cancel_timer(call_id)
        self._generation += 1
        generation = self._generation
        task = asyncio.create_task(self._expire(call_id, generation), name=f"silence-{call_id}")
        self._timers[call_id] = (generation, task)
        logger.debug(f"Silence watchdog armed for {call_id} ({self._timeout}s)")

    def disarm(self, call_id: str) -> None:
        self._cancel_timer(call_id)

    def reset(self, call_id: str) -> None:
        """Customer spoke: stop the timer and clear the silence count"""
        self._cancel_timer(call_id)
        self._silences.pop(call_id, None)

    def release(self, call_id: str) -> None:
        """Call ended: drop all state"""
        self.reset(call_id)

    def is_armed(self, call_id: str) -> bool:
        return call_id in self._timers

    def silence_count(self, call_id: str) -> int:
        return self._silences.get(call_id, 0)

    def _cancel_timer(self, call_id: str) -> None:
        entry = self._timers.pop(call_id, None)
        if entry is None:
            return
        _, task = entry
        if task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _expire(self, call_id: str, generation: int) -> None:
        try:
            await asyncio.sleep(self._timeout)
        except asyncio.CancelledError:
            return

        entry = self._timers.get(call_id)
        if entry is None or entry[0] != generation:
            # Disarmed or re-armed while we slept
            return
        self._timers.pop(call_id, None)

        count = self._silences.get(call_id, 0) + 1
        self._silences[call_id] = count

        try:
            if count >= self._max_silences:
                logger.info(f"Call {call_id}: {count} consecutive silences, giving up")
                if self._on_give_up:
                    await self._on_give_up(call_id, count)
            else:
                logger.info(f"Call {call_id}: silence #{count}, re-prompting")
                if self._on_reprompt:
                    await self._on_reprompt(call_id, count)
        except Exception as e:
            logger.error(f"Silence handler failed for call {call_id}: {e}", exc_info=True)

    async def shutdown(self) -> None:
        tasks = [task for _, task in self._timers.values()]
        self._timers.clear()
        self._silences.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def armed_count(self) -> int:
        return len(self._timers)
