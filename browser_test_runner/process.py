"""Subprocess helpers and the browser driver process handle."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from browser_test_runner.models.messages import (
    DriverCommand,
    ScreenshotAck,
    StopCommand,
    parse_driver_message,
)

log = logging.getLogger(__name__)
driver_log = logging.getLogger("browser_test_runner.driver")

# Drivers may print large console messages on a single line
STREAM_LIMIT = 2**20


@dataclass(frozen=True, kw_only=True)
class CommandResult:
    """Outcome of a command run to completion."""

    returncode: int
    stdout: str
    stderr: str


async def run_command(*args: str | Path, cwd: Path | None = None) -> CommandResult:
    """Run a command and capture its output."""
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


class DriverProcess:
    """A running browser driver.

    Commands are written as JSON lines on the driver's stdin. Lines of its
    stdout that parse as driver messages are handed to ``on_message``, every
    other output line is forwarded to the ``browser_test_runner.driver``
    logger.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        label: str,
        on_message: Callable[[ScreenshotAck], None],
    ) -> None:
        self._process = process
        self._label = label
        self._on_message = on_message
        self._readers = [
            asyncio.ensure_future(self._pump_stdout()),
            asyncio.ensure_future(self._pump_stderr()),
        ]

    @classmethod
    async def spawn(
        cls,
        command: Sequence[str],
        *args: str,
        label: str,
        on_message: Callable[[ScreenshotAck], None],
    ) -> "DriverProcess":
        """Start the driver."""
        process = await asyncio.create_subprocess_exec(
            *command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
        log.debug("Driver started for %s (pid=%d)", label, process.pid)
        return cls(process, label=label, on_message=on_message)

    @property
    def pid(self) -> int:
        """Process id of the driver."""
        return self._process.pid

    @property
    def connected(self) -> bool:
        """Whether commands can still be sent."""
        stdin = self._process.stdin
        return (
            self._process.returncode is None
            and stdin is not None
            and not stdin.is_closing()
        )

    def send(self, message: DriverCommand) -> bool:
        """Write a command to the driver, return False if it is gone."""
        stdin = self._process.stdin
        if stdin is None or not self.connected:
            return False
        try:
            stdin.write(message.model_dump_json().encode() + b"\n")
        except (BrokenPipeError, ConnectionResetError):
            log.debug("Driver of %s closed its input", self._label)
            return False
        return True

    def kill(self) -> None:
        """Kill the driver if it is still running."""
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()

    def stop(self, grace: float) -> None:
        """Ask the driver to stop, kill it if it is still alive after grace."""
        if not self.send(StopCommand()):
            self.kill()
            return
        asyncio.get_running_loop().call_later(grace, self.kill)

    async def wait(self) -> int:
        """Wait for the driver to exit and its output to be drained."""
        await asyncio.gather(*self._readers)
        return await self._process.wait()

    async def _pump_stdout(self) -> None:
        async for line in self._lines(self._process.stdout):
            if (message := parse_driver_message(line)) is not None:
                self._on_message(message)
            elif line:
                driver_log.info("%s %s", self._label, line)

    async def _pump_stderr(self) -> None:
        async for line in self._lines(self._process.stderr):
            if line:
                driver_log.warning("%s %s", self._label, line)

    async def _lines(self, stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # The reader drops the buffered part of the line and keeps going
                driver_log.warning(
                    "%s output line longer than %d bytes dropped",
                    self._label,
                    STREAM_LIMIT,
                )
                continue
            if not raw:
                return
            yield raw.decode(errors="replace").rstrip()
