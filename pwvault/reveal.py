"""
Timed reveal — show one decrypted password, then wipe it.

After the password is printed two tasks race:

- a timer that sleeps for the reveal timeout;
- a listener that waits for a single keypress.

Whichever finishes first fires a one-shot latch that erases the text from
the terminal and scrubs the plaintext buffer. The other task is cancelled.
The latch fires exactly once, and it is also fired from a ``finally``
block so the screen is cleared even when the reveal path fails.

Security Note:
    Scrubbing is best effort: the interpreter and the terminal may keep
    their own copies of the text.
"""
import os
import sys
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TextIO

from .crypto import scrub
from .conf import DEFAULT_REVEAL_TIMEOUT
from .store import CredentialStore

logger = logging.getLogger("pwvault")

SAVE_CURSOR = "\x1b7"
RESTORE_CURSOR = "\x1b8"
CLEAR_TO_END = "\x1b[J"

TIMEOUT = "timeout"
KEYPRESS = "keypress"
ABORTED = "aborted"


async def wait_for_keypress(stream: Optional[TextIO] = None) -> None:
    """Return after one key is pressed on the terminal.

    Waits forever when input is not a terminal, leaving the timer to win.
    Cancelling the wait restores the terminal mode.
    """
    stream = stream or sys.stdin
    if os.name == "nt":
        import msvcrt
        while not msvcrt.kbhit():
            await asyncio.sleep(0.05)
        msvcrt.getwch()
        return
    if not stream.isatty():
        await asyncio.Event().wait()
        return

    import termios
    import tty
    fd = stream.fileno()
    old = termios.tcgetattr(fd)
    loop = asyncio.get_running_loop()
    pressed = loop.create_future()

    def _on_key() -> None:
        os.read(fd, 1)
        if not pressed.done():
            pressed.set_result(None)

    tty.setcbreak(fd)
    loop.add_reader(fd, _on_key)
    try:
        await pressed
    finally:
        loop.remove_reader(fd)
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


class _ClearLatch:
    """Runs the clear action once, for the first trigger only."""

    def __init__(self, action: Callable[[str], None]):
        self._action = action
        self.fired_by: Optional[str] = None
        self.done = asyncio.Event()

    def fire(self, trigger: str) -> bool:
        if self.fired_by is not None:
            return False
        self.fired_by = trigger
        try:
            self._action(trigger)
        finally:
            self.done.set()
        return True


class TimedReveal:
    """Displays a decrypted password for a bounded time.

    Args:
        store: Store used to look up and decrypt the password.
        timeout: Seconds before the password is cleared automatically.
        stream: Where the password is written (default ``sys.stdout``).
        keypress: Coroutine factory that completes on a keypress
            (default ``wait_for_keypress``).
    """

    def __init__(
        self,
        store: CredentialStore,
        timeout: float = DEFAULT_REVEAL_TIMEOUT,
        stream: Optional[TextIO] = None,
        keypress: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self._store = store
        self._timeout = timeout
        self._stream = stream or sys.stdout
        self._keypress = keypress or wait_for_keypress
        self.clear_count = 0

    def _show(self, buffer: bytearray) -> None:
        self._stream.write(SAVE_CURSOR)
        self._stream.write(f"Password: {buffer.decode('utf-8')}")
        self._stream.flush()

    def _clear(self, buffer: bytearray, trigger: str) -> None:
        self._stream.write(RESTORE_CURSOR + CLEAR_TO_END)
        self._stream.flush()
        scrub(buffer)
        self.clear_count += 1
        logger.debug("Revealed password cleared by %s", trigger)

    async def _timer(self, latch: _ClearLatch) -> None:
        await asyncio.sleep(self._timeout)
        latch.fire(TIMEOUT)

    async def _listener(self, latch: _ClearLatch) -> None:
        await self._keypress()
        latch.fire(KEYPRESS)

    async def reveal(self, site: str, user: str) -> str:
        """Show the password for ``site``/``user`` until timeout or keypress.

        Returns:
            The trigger that cleared the display: ``"timeout"`` or
            ``"keypress"``.

        Raises:
            NotFoundError: If no such credential exists (nothing is shown).
        """
        buffer = self._store.get_bytes(site, user)
        latch = _ClearLatch(lambda trigger: self._clear(buffer, trigger))
        tasks: list[asyncio.Task] = []
        done_wait: Optional[asyncio.Task] = None
        try:
            self._show(buffer)
            tasks = [
                asyncio.create_task(self._timer(latch), name="reveal-timer"),
                asyncio.create_task(self._listener(latch), name="reveal-keypress"),
            ]
            done_wait = asyncio.create_task(latch.done.wait())
            await asyncio.wait(
                [done_wait, *tasks], return_when=asyncio.FIRST_COMPLETED,
            )
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception():
                    raise task.exception()
        finally:
            if done_wait is not None:
                done_wait.cancel()
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            latch.fire(ABORTED)
        return latch.fired_by

    def reveal_sync(self, site: str, user: str) -> str:
        return asyncio.run(self.reveal(site, user))
