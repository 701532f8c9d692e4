"""Shared fixtures: fake child processes and a log sink on the package logger."""

import asyncio
import logging
import os
import textwrap
from pathlib import Path

import pytest

from mcsm_launcher.logsink import PACKAGE_LOGGER, LogSink


class FakeProcess:
    """Stands in for asyncio.subprocess.Process; the test decides when it exits."""

    def __init__(self, pid: int):
        self.pid = pid
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.signals = []
        self._exited = asyncio.Event()

    def send_signal(self, sig):
        if self.returncode is not None:
            raise ProcessLookupError("process already exited")
        self.signals.append(sig)

    async def wait(self):
        await self._exited.wait()
        return self.returncode

    def finish(self, returncode: int):
        self.returncode = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()


class FakeSpawner:
    def __init__(self):
        self.procs = {}
        self.calls = []
        self.fail = {}
        self._next_pid = 4000

    async def __call__(self, *args, **kwargs):
        name = os.path.basename(kwargs["cwd"])
        self.calls.append((args, kwargs))
        # the real spawn yields to the loop before returning or raising
        await asyncio.sleep(0)
        if name in self.fail:
            raise self.fail[name]
        self._next_pid += 1
        proc = FakeProcess(self._next_pid)
        self.procs[name] = proc
        return proc


@pytest.fixture
def spawner(monkeypatch):
    fake = FakeSpawner()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake)
    return fake


@pytest.fixture
def package_logger():
    """The package logger at INFO, restored afterwards."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved = (logger.level, logger.propagate, list(logger.handlers))
    logger.setLevel(logging.INFO)
    yield logger
    for handler in list(logger.handlers):
        if handler not in saved[2]:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(saved[0])
    logger.propagate = saved[1]


@pytest.fixture
def sink(tmp_path, package_logger):
    handler = LogSink(tmp_path / "output.log")
    package_logger.addHandler(handler)
    yield handler
    package_logger.removeHandler(handler)
    handler.close()


@pytest.fixture
def make_apps(tmp_path):
    """Write web/app.py and daemon/app.py under tmp_path."""

    def _make(web: str, daemon: str) -> Path:
        for name, source in (("web", web), ("daemon", daemon)):
            app_dir = tmp_path / name
            app_dir.mkdir(exist_ok=True)
            (app_dir / "app.py").write_text(textwrap.dedent(source))
        return tmp_path

    return _make


async def settle(turns: int = 5) -> None:
    """Let pending callbacks and woken tasks run."""
    for _ in range(turns):
        await asyncio.sleep(0)
