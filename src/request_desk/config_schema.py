"""Request desk configuration schema."""

from __future__ import annotations

import copy
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from request_desk.errors import InvalidInputError
from request_desk.state_machine import DEFAULT_TRANSITION_RULES, TransitionPolicy

CONFIG_SECTION = "request_desk"

logger = logging.getLogger("request_desk")


class RetryPolicy(BaseModel):
    """Bounded retry with linearly increasing delay.

    After failed attempt ``n`` (1-based) the caller waits
    ``n * base_delay_seconds`` before trying again.
    """

    max_attempts: int = Field(default=5, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        return attempt * self.base_delay_seconds


def _default_rules() -> dict[str, dict[str, list[str]]]:
    return {
        str(role): {str(source): [str(t) for t in targets] for source, targets in table.items()}
        for role, table in copy.deepcopy(DEFAULT_TRANSITION_RULES).items()
    }


class DeskConfig(BaseModel):
    """Validated request desk runtime configuration."""

    identity_retry: RetryPolicy = Field(default_factory=RetryPolicy)
    transitions: dict[str, dict[str, list[str]]] = Field(default_factory=_default_rules)

    @field_validator("transitions")
    @classmethod
    def _validate_transitions(
        cls, value: dict[str, dict[str, list[str]]]
    ) -> dict[str, dict[str, list[str]]]:
        try:
            TransitionPolicy.from_rules(value)
        except InvalidInputError as exc:
            raise ValueError(str(exc)) from exc
        return value

    def transition_policy(self) -> TransitionPolicy:
        return TransitionPolicy.from_rules(self.transitions)


def load_config(config_path: str | Path) -> DeskConfig:
    """Load desk config from a JSON file.

    Returns defaults when the file or its ``request_desk`` section is
    missing.
    Raises:
    - json.JSONDecodeError for malformed JSON.
    - ValueError when the file or section is not an object.
    - pydantic ValidationError on invalid values.
    """
    path = Path(config_path)
    if not path.exists():
        return DeskConfig()

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("config file must contain a JSON object")

    section = payload.get(CONFIG_SECTION)
    if section is None:
        return DeskConfig()
    if not isinstance(section, dict):
        raise ValueError(f"{CONFIG_SECTION} must be an object when provided")

    return DeskConfig.model_validate(section)


class RuntimeSettings(BaseModel):
    """Process-level settings read from ``DESK_*`` environment variables."""

    host: str = "0.0.0.0"
    port: int = Field(default=8340, ge=1, le=65535)
    log_dir: Path | None = None
    log_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)
    log_backups: int = Field(default=5, ge=1)
    uvicorn_log_level: str = "warning"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeSettings:
        """Build settings from the environment.

        A variable that fails validation is logged and its default kept, so a
        typo in one setting never stops the server from starting.
        """
        environ = os.environ if environ is None else environ
        accepted: dict[str, str] = {}
        for name, env_var in RUNTIME_ENV_VARS.items():
            raw = environ.get(env_var)
            if raw is None or raw.strip() == "":
                continue
            try:
                cls.model_validate({name: raw})
            except ValidationError:
                logger.warning("Ignoring invalid %s=%r", env_var, raw)
                continue
            accepted[name] = raw
        return cls.model_validate(accepted)


RUNTIME_ENV_VARS: dict[str, str] = {
    "host": "DESK_HOST",
    "port": "DESK_PORT",
    "log_dir": "DESK_LOG_DIR",
    "log_max_bytes": "DESK_LOG_MAX_BYTES",
    "log_backups": "DESK_LOG_BACKUPS",
    "uvicorn_log_level": "DESK_UVICORN_LOG_LEVEL",
}
