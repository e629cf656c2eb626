import asyncio
import json
import logging
from typing import AsyncGenerator, Callable

from ln_dice.models.dc_models import GameSessionModel

HEART_BEAT = 15


class StateNotifier:
    """Wakes up listeners whenever a session changes.

    A version counter lets a listener tell whether it missed a change while
    it was busy sending the previous one.
    """

    def __init__(self):
        self.version = 0
        self._event = asyncio.Event()

    def notify(self):
        self.version += 1
        event, self._event = self._event, asyncio.Event()
        event.set()

    async def wait_for_change(self, seen_version: int, timeout: float | None = None) -> bool:
        """Wait until version moves past seen_version.

        Returns:
            bool: False if the timeout expired first
        """
        while self.version == seen_version:
            try:
                await asyncio.wait_for(self._event.wait(), timeout)
            except asyncio.TimeoutError:
                return False
        return True


async def event_generator(
    notifier: StateNotifier,
    get_snapshot: Callable[[], GameSessionModel],
    heart_beat: float = HEART_BEAT,
) -> AsyncGenerator[str, None]:
    """Server-Sent Events stream of session snapshots.

    Args:
        notifier (StateNotifier): Notifier of the session being followed
        get_snapshot (Callable[[], GameSessionModel]): Builds the current snapshot
        heart_beat (float, optional): Seconds of silence before a keep-alive comment is sent.
    """
    seen = notifier.version
    payload = json.dumps(get_snapshot().model_dump(mode="json"))
    yield f"event: session_update\ndata: {payload}\n\n"
    try:
        while True:
            changed = await notifier.wait_for_change(seen, timeout=heart_beat)
            if not changed:
                yield ": heartbeat\n\n"
                continue
            seen = notifier.version
            payload = json.dumps(get_snapshot().model_dump(mode="json"))
            logging.debug(f"Payload: {payload}")
            yield f"event: session_update\ndata: {payload}\n\n"
    finally:
        logging.info("Session event stream closed")
