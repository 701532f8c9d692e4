from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_LOG_FILE = "output.log"
DEFAULT_SHUTDOWN_GRACE = 5.0  # seconds, after a termination signal
DEFAULT_FAILURE_GRACE = 1.0  # seconds, after an unexpected child exit


def _parse_grace(name: str, raw: str | float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class Config:
    base_dir: str = dataclasses.field(default_factory=os.getcwd)
    log_file: str = DEFAULT_LOG_FILE
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    failure_grace: float = DEFAULT_FAILURE_GRACE
    status_port: int | None = None

    def __post_init__(self) -> None:
        if not Path(self.base_dir).is_dir():
            raise ValueError(f"Base directory does not exist: {self.base_dir}")
        # frozen dataclass: normalized values go through object.__setattr__
        object.__setattr__(self, "base_dir", str(self.base_dir))
        object.__setattr__(
            self, "shutdown_grace", _parse_grace("shutdown_grace", self.shutdown_grace)
        )
        object.__setattr__(
            self, "failure_grace", _parse_grace("failure_grace", self.failure_grace)
        )

    def replace(self, **overrides: object) -> Config:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        base = os.getenv("MCSM_LAUNCHER_BASE_DIR") or os.getcwd()

        log_file = os.getenv("MCSM_LAUNCHER_LOG_FILE") or DEFAULT_LOG_FILE

        shutdown_grace = _parse_grace(
            "MCSM_LAUNCHER_SHUTDOWN_GRACE",
            os.getenv("MCSM_LAUNCHER_SHUTDOWN_GRACE", DEFAULT_SHUTDOWN_GRACE),
        )
        failure_grace = _parse_grace(
            "MCSM_LAUNCHER_FAILURE_GRACE",
            os.getenv("MCSM_LAUNCHER_FAILURE_GRACE", DEFAULT_FAILURE_GRACE),
        )

        raw_port = os.getenv("MCSM_LAUNCHER_STATUS_PORT", "").strip()
        try:
            status_port = int(raw_port) if raw_port else None
        except ValueError:
            raise ValueError(
                f"MCSM_LAUNCHER_STATUS_PORT must be an integer, got {raw_port!r}"
            ) from None

        return cls(
            base_dir=base,
            log_file=log_file,
            shutdown_grace=shutdown_grace,
            failure_grace=failure_grace,
            status_port=status_port,
        )
