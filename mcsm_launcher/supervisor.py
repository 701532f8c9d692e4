"""Supervisor — runs the web and daemon processes as one unit.

Both children are started together and stopped together:

  - a termination signal (SIGINT / SIGTERM / SIGHUP) is forwarded to both,
    and the launcher exits with 0 after a grace window;
  - if one child exits on its own, the other is sent SIGTERM and the
    launcher exits with 1 after a shorter grace window.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mcsm_launcher.config import DEFAULT_FAILURE_GRACE, DEFAULT_SHUTDOWN_GRACE
from mcsm_launcher.logsink import LogSink

log = logging.getLogger(__name__)

ENTRY_SCRIPT = "app.py"
TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)
READ_CHUNK = 4096


class ChildStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class Phase(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"  # a termination signal was received
    CONTAINING = "containing"  # a child exited on its own
    TERMINATED = "terminated"


@dataclass
class ChildProcess:
    """State for one supervised child."""

    name: str
    label: str
    cwd: str
    status: ChildStatus = ChildStatus.STARTING
    pid: int | None = None
    exit_code: int | None = None
    exit_signal: str | None = None
    killed: bool = False
    start_time: float = field(default_factory=time.time)
    stop_time: float | None = None
    _process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)

    @property
    def exited(self) -> bool:
        return self.status in (ChildStatus.STOPPED, ChildStatus.FAILED)

    def record_exit(self, returncode: int | None) -> None:
        # asyncio reports death-by-signal as a negative return code
        if returncode is not None and returncode < 0:
            try:
                self.exit_signal = signal.Signals(-returncode).name
            except ValueError:
                self.exit_signal = str(-returncode)
        else:
            self.exit_code = returncode
        self.stop_time = time.time()
        self.status = ChildStatus.STOPPED if returncode == 0 else ChildStatus.FAILED


class Supervisor:
    """Owns the web/daemon pair, the shutdown flag and the exit timers."""

    def __init__(
        self,
        base_dir: str,
        *,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        failure_grace: float = DEFAULT_FAILURE_GRACE,
        sink: LogSink | None = None,
    ) -> None:
        self.shutdown_grace = shutdown_grace
        self.failure_grace = failure_grace
        self.sink = sink
        self.shutting_down = False
        self.phase = Phase.RUNNING
        self.web = ChildProcess("web", "Web", os.path.join(base_dir, "web"))
        self.daemon = ChildProcess("daemon", "Daemon", os.path.join(base_dir, "daemon"))
        self.timers: list[asyncio.TimerHandle] = []
        self._exit: asyncio.Future[int] | None = None
        self._signals_installed: list[signal.Signals] = []

    @property
    def children(self) -> tuple[ChildProcess, ChildProcess]:
        return (self.web, self.daemon)

    def sibling(self, child: ChildProcess) -> ChildProcess:
        return self.daemon if child is self.web else self.web

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn both children and attach their output and exit watchers."""
        loop = asyncio.get_running_loop()
        self._exit = loop.create_future()

        log.info("Starting MCSManager processes...")
        failed = []
        for child in self.children:
            if not await self._spawn(child):
                failed.append(child)
        for child in self.children:
            if child._process is not None:
                log.info("%s process started, PID: %s", child.label, child.pid)
                self._watch(child, child._process)
        # Reported only once both spawns are done, so the sibling can be stopped.
        for child in failed:
            self._on_child_exit(child, None)

    async def wait(self) -> int:
        """Block until an exit timer fires; return the launcher exit code."""
        if self._exit is None:
            raise RuntimeError("Supervisor has not been started")
        return await self._exit

    async def run(self) -> int:
        await self.start()
        self.install_signal_handlers()
        try:
            return await self.wait()
        finally:
            self.remove_signal_handlers()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in TERMINATION_SIGNALS:
            loop.add_signal_handler(sig, self.handle_signal, sig)
            self._signals_installed.append(sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        while self._signals_installed:
            loop.remove_signal_handler(self._signals_installed.pop())

    # ------------------------------------------------------------------
    # Termination protocol
    # ------------------------------------------------------------------

    def handle_signal(self, sig: signal.Signals) -> None:
        """Forward a termination signal to both children, once."""
        if self.shutting_down:
            return
        self.shutting_down = True
        self.phase = Phase.STOPPING

        sig = signal.Signals(sig)
        log.info("Received %s, shutting down all processes...", sig.name)

        for child in self.children:
            if child.killed or child.exited:
                continue
            log.info("Sending %s to %s process", sig.name, child.label)
            self._send(child, sig)

        self._arm_exit_timer(self.shutdown_grace, 0)

    def _on_child_exit(self, child: ChildProcess, returncode: int | None) -> None:
        child.record_exit(returncode)

        if self.shutting_down:
            log.info(
                "%s process exited, code: %s, signal: %s",
                child.label, child.exit_code, child.exit_signal,
            )
            return

        other = self.sibling(child)
        if self.phase is Phase.RUNNING:
            self.phase = Phase.CONTAINING
        log.error(
            "%s process exited unexpectedly! code: %s, signal: %s",
            child.label, child.exit_code, child.exit_signal,
        )
        log.error(
            "%s process exit detected, stopping %s process...",
            child.label, other.label,
        )
        if not (other.killed or other.exited):
            self._send(other, signal.SIGTERM)

        self._arm_exit_timer(self.failure_grace, 1)

    def _send(self, child: ChildProcess, sig: signal.Signals) -> None:
        """Best-effort signal delivery; failures are logged, never raised."""
        proc = child._process
        if proc is None:
            return
        try:
            proc.send_signal(sig)
        except (ProcessLookupError, OSError) as exc:
            log.error("Failed to stop %s process: %s", child.label, exc)
            return
        child.killed = True

    def _arm_exit_timer(self, delay: float, code: int) -> None:
        loop = asyncio.get_running_loop()
        self.timers.append(loop.call_later(delay, self._force_exit, code))

    def _force_exit(self, code: int) -> None:
        # Timers are never cancelled; whichever fires first decides.
        if self._exit is None or self._exit.done():
            return
        if code == 0:
            log.info("Forcing launcher exit")
        self.phase = Phase.TERMINATED
        if self.sink is not None:
            self.sink.close()
        self._exit.set_result(code)

    # ------------------------------------------------------------------
    # Spawning and watching
    # ------------------------------------------------------------------

    async def _spawn(self, child: ChildProcess) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                sys.executable,
                ENTRY_SCRIPT,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=child.cwd,
                env=os.environ.copy(),
                # Own session: terminal signals reach only the launcher
                start_new_session=True,
            )
        except OSError as exc:
            log.error("%s process error: %s", child.label, exc)
            return False

        child._process = process
        child.pid = process.pid
        child.status = ChildStatus.RUNNING
        return True

    def _watch(self, child: ChildProcess, process: asyncio.subprocess.Process) -> None:
        child._tasks = [
            asyncio.create_task(
                self._relay(child, process.stdout, error=False),  # type: ignore[arg-type]
                name=f"{child.name}-stdout",
            ),
            asyncio.create_task(
                self._relay(child, process.stderr, error=True),  # type: ignore[arg-type]
                name=f"{child.name}-stderr",
            ),
            asyncio.create_task(
                self._watch_exit(child, process),
                name=f"{child.name}-waiter",
            ),
        ]

    async def _watch_exit(
        self, child: ChildProcess, process: asyncio.subprocess.Process
    ) -> None:
        code = await process.wait()
        self._on_child_exit(child, code)

    @staticmethod
    async def _relay(
        child: ChildProcess,
        stream: asyncio.StreamReader,
        *,
        error: bool,
    ) -> None:
        """Copy a child stream into the log, one record per line."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""

        def emit(line: str) -> None:
            line = line.rstrip()
            if not line:
                return
            if error:
                log.error("[%s ERROR] %s", child.label, line)
            else:
                log.info("[%s] %s", child.label, line)

        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            text = decoder.decode(chunk)
            *lines, pending = (pending + text).split("\n")
            for line in lines:
                emit(line)

        tail = pending + decoder.decode(b"", final=True)
        emit(tail)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return summary info for the launcher and both children."""
        processes = []
        for child in self.children:
            uptime = None
            if child.status == ChildStatus.RUNNING:
                uptime = round(time.time() - child.start_time, 1)
            elif child.stop_time:
                uptime = round(child.stop_time - child.start_time, 1)
            processes.append({
                "name": child.name,
                "cwd": child.cwd,
                "pid": child.pid,
                "status": child.status.value,
                "exit_code": child.exit_code,
                "exit_signal": child.exit_signal,
                "killed": child.killed,
                "uptime_seconds": uptime,
            })
        return {
            "phase": self.phase.value,
            "shutting_down": self.shutting_down,
            "processes": processes,
        }

