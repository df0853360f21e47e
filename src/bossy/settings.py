"""Runtime configuration for bossy."""

import os
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bossy.errors import ConfigError

ENV_PREFIX = "BOSSY_"
MIN_REFRESH_INTERVAL = 0.1


def _describe(exc: ValidationError, env: bool = False) -> str:
    problems = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"]) or "settings"
        if env:
            name = ENV_PREFIX + name.upper()
        problems.append(f"{name}: {error['msg']}")
    return "Invalid value for " + "; ".join(problems)


class Settings(BaseModel):
    """
    Tunable knobs shared by the inventory, the kill protocol and the front ends.

    Every field can be overridden from the environment with ``BOSSY_<FIELD>``,
    e.g. ``BOSSY_GRACEFUL_TIMEOUT=3``. Non-finite numbers are rejected so the
    kill protocol always stays bounded.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    monitor_refresh_interval: float = 1.0
    dashboard_refresh_interval: float = 2.0
    cpu_history_size: int = Field(default=100, ge=1)
    kill_poll_interval: float = Field(default=0.1, ge=0.001, le=1.0)
    graceful_timeout: float = Field(default=5.0, ge=0, le=60.0)
    forced_timeout: float = Field(default=2.0, ge=0, le=60.0)
    command_timeout: float = Field(default=10.0, gt=0)
    log_level: str = "WARNING"

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigError(_describe(exc)) from exc

    @field_validator("monitor_refresh_interval", "dashboard_refresh_interval")
    @classmethod
    def clamp_refresh_interval(cls, v: float) -> float:
        """Refresh intervals never drop below MIN_REFRESH_INTERVAL."""
        return max(MIN_REFRESH_INTERVAL, v)

    @property
    def graceful_polls(self) -> int:
        """Number of liveness checks allowed after SIGTERM."""
        return max(1, round(self.graceful_timeout / self.kill_poll_interval))

    @property
    def forced_polls(self) -> int:
        """Number of liveness checks allowed after SIGKILL."""
        return max(1, round(self.forced_timeout / self.kill_poll_interval))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from defaults plus ``BOSSY_*`` environment overrides."""
        environ = os.environ if environ is None else environ
        raw = {
            name: environ[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in environ
        }
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(_describe(exc, env=True)) from exc

    def with_overrides(self, **changes: Any) -> "Settings":
        """Return a validated copy with some fields replaced."""
        return Settings(**{**self.model_dump(), **changes})
