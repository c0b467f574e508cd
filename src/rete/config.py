"""
Driver configuration.

The Network itself never reads the environment; the CLI builds a
ReteConfig from RETE_* variables and then applies its own flags on top.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from rete.errors import ConfigurationError
from rete.models import DuplicatePolicy

ENV_LOG_LEVEL = "RETE_LOG_LEVEL"
ENV_DUPLICATE_POLICY = "RETE_DUPLICATE_POLICY"
ENV_THREAD_SAFE = "RETE_THREAD_SAFE"

DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean (1/0, true/false), got {raw!r}")


def _parse_level(raw: str) -> str:
    level = raw.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"Unknown log level {raw!r}")
    return level


@dataclass
class ReteConfig:
    log_level: str = DEFAULT_LOG_LEVEL
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.IDEMPOTENT
    thread_safe: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReteConfig":
        env = os.environ if environ is None else environ
        config = cls()
        if env.get(ENV_LOG_LEVEL):
            config.log_level = _parse_level(env[ENV_LOG_LEVEL])
        if env.get(ENV_DUPLICATE_POLICY):
            config.duplicate_policy = DuplicatePolicy.parse(env[ENV_DUPLICATE_POLICY])
        if env.get(ENV_THREAD_SAFE):
            config.thread_safe = _parse_bool(ENV_THREAD_SAFE, env[ENV_THREAD_SAFE])
        return config

    def with_overrides(
        self,
        log_level: Optional[str] = None,
        duplicate_policy: Optional[str] = None,
    ) -> "ReteConfig":
        return ReteConfig(
            log_level=_parse_level(log_level) if log_level else self.log_level,
            duplicate_policy=(
                DuplicatePolicy.parse(duplicate_policy) if duplicate_policy else self.duplicate_policy
            ),
            thread_safe=self.thread_safe,
        )

    def configure_logging(self) -> None:
        logging.basicConfig(level=self.log_level, format=LOG_FORMAT)
