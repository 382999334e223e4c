"""Engine configuration."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from enum import StrEnum

from style_oracle.errors import ConfigurationError

DEFAULT_EXECUTABLE = "servo"


class EngineMode(StrEnum):
    SIMULATED = "simulated"   # heuristic results, no engine process
    REAL = "real"             # one engine process per query
    OPTIMIZED = "optimized"   # long-lived daemon; engine must read URIs from stdin


@dataclass(frozen=True)
class EngineConfig:
    """Read-only settings for a style engine instance."""

    executable_path: str | None = None
    mode: EngineMode = EngineMode.SIMULATED
    batch_size: int = 5
    timeout: float = 10.0  # seconds per engine round trip
    close_delay_ms: int = 500  # delay between emitting results and window.close()
    startup_timeout: float = 10.0
    engine_args: tuple[str, ...] = ("--headless",)
    temp_dir: str | None = None

    @property
    def needs_engine(self) -> bool:
        return self.mode != EngineMode.SIMULATED

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if not isinstance(self.mode, EngineMode):
            raise ConfigurationError(f"Unknown engine mode: {self.mode!r}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size}")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.startup_timeout <= 0:
            raise ConfigurationError(f"startup_timeout must be positive, got {self.startup_timeout}")
        if self.close_delay_ms < 0:
            raise ConfigurationError(f"close_delay_ms must not be negative, got {self.close_delay_ms}")

    def resolve_executable(self) -> str | None:
        """Return the configured executable, or the engine found on PATH."""
        if self.executable_path:
            return self.executable_path
        return shutil.which(DEFAULT_EXECUTABLE)
