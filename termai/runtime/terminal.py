from __future__ import annotations

import asyncio
import locale
import logging
from collections import defaultdict, deque
from dataclasses import dataclass

from .event_bus import EventBus, SessionEvent, SessionEventKind
from .llm.errors import CancellationToken

logger = logging.getLogger(__name__)

_MAX_CAPTURE_CHARS = 200_000


@dataclass(frozen=True, slots=True)
class CommandOutput:
    output: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class TerminalBridge:
    """
    Hands shell commands to whichever terminal collaborator is subscribed to
    `EXECUTE_COMMAND` and waits for its output.

    Output is matched back by command text and session id. Concurrent waits on the same
    pair are served in request order.
    """

    def __init__(self, *, bus: EventBus, cancel: CancellationToken, poll_interval_s: float = 0.5) -> None:
        self._bus = bus
        self._cancel = cancel
        self._poll_interval_s = poll_interval_s
        self._waiters: dict[tuple[str, str], deque[asyncio.Future[CommandOutput]]] = defaultdict(deque)

    async def run_command(
        self,
        *,
        session_id: str,
        command: str,
        cwd: str,
        timeout_s: float,
    ) -> CommandOutput | None:
        loop = asyncio.get_running_loop()
        key = (command, session_id)
        fut: asyncio.Future[CommandOutput] = loop.create_future()
        # Register before publishing so a synchronous runner cannot deliver into the void.
        self._waiters[key].append(fut)

        self._bus.publish(
            SessionEvent(
                kind=SessionEventKind.EXECUTE_COMMAND,
                session_id=session_id,
                payload={"command": command, "cwd": cwd},
            )
        )

        deadline = loop.time() + timeout_s
        try:
            while not fut.done():
                if self._cancel.cancelled:
                    logger.info("Command wait cancelled: %s", command)
                    return None
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning("Command timed out after %.0fs: %s", timeout_s, command)
                    return None
                await asyncio.wait({fut}, timeout=min(self._poll_interval_s, remaining))
            return fut.result()
        finally:
            self._discard(key, fut)

    def deliver_output(self, *, command: str, session_id: str, output: str, exit_code: int) -> bool:
        key = (command, session_id)
        queue = self._waiters.get(key)
        while queue:
            fut = queue.popleft()
            if fut.done():
                continue
            fut.set_result(CommandOutput(output=output, exit_code=exit_code))
            self._bus.publish(
                SessionEvent(
                    kind=SessionEventKind.COMMAND_FINISHED,
                    session_id=session_id,
                    payload={"command": command, "exit_code": exit_code},
                )
            )
            return True
        logger.debug("No waiter for command output: %s", command)
        return False

    def _discard(self, key: tuple[str, str], fut: asyncio.Future[CommandOutput]) -> None:
        queue = self._waiters.get(key)
        if queue is not None:
            try:
                queue.remove(fut)
            except ValueError:
                pass
            if not queue:
                self._waiters.pop(key, None)
        if not fut.done():
            fut.cancel()


class LocalTerminalRunner:
    """Runs `EXECUTE_COMMAND` requests as local subprocesses and reports back to the bridge."""

    def __init__(self, *, bridge: TerminalBridge, bus: EventBus) -> None:
        self._bridge = bridge
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribe = bus.subscribe(self._on_event, kinds={SessionEventKind.EXECUTE_COMMAND})

    def close(self) -> None:
        self._unsubscribe()
        for task in list(self._tasks):
            task.cancel()

    def _on_event(self, event: SessionEvent) -> None:
        command = str(event.payload.get("command") or "")
        cwd = str(event.payload.get("cwd") or ".")
        task = asyncio.get_running_loop().create_task(self._run(command=command, cwd=cwd, session_id=event.session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, *, command: str, cwd: str, session_id: str) -> None:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await proc.communicate()
            exit_code = proc.returncode if proc.returncode is not None else -1
            text = stdout.decode(locale.getpreferredencoding(False) or "utf-8", errors="replace")
        except OSError as e:
            text = f"Failed to start command: {e}"
            exit_code = 127
        if len(text) > _MAX_CAPTURE_CHARS:
            text = text[:_MAX_CAPTURE_CHARS] + "\n…(output truncated)"
        self._bridge.deliver_output(command=command, session_id=session_id, output=text, exit_code=exit_code)
