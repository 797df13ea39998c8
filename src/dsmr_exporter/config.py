import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


def _substitute_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        env_val = os.environ.get(var_name)
        if env_val is None:
            raise ValueError(f"Environment variable {var_name!r} is not set")
        return env_val

    return re.sub(r"\$\{([^}]+)}", replacer, value)


def _walk_and_substitute(obj: object) -> object:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_substitute(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_substitute(item) for item in obj]
    return obj


def _apply_overrides(raw: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Set dotted keys (``"server.port"``) on a nested dict, skipping None values."""
    for dotted, value in overrides.items():
        if value is None:
            continue
        node = raw
        *parents, leaf = dotted.split(".")
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[leaf] = value
    return raw


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    shutdown_timeout: float = 5.0

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v


class SerialConfig(BaseModel):
    device: str
    baudrate: int = Field(default=115200, gt=0)


class BackoffConfig(BaseModel):
    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 5.0
    randomization_factor: float = 0.0

    @field_validator("initial_interval")
    @classmethod
    def validate_initial_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("initial_interval must be positive")
        return v

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("multiplier must be at least 1")
        return v

    @field_validator("randomization_factor")
    @classmethod
    def validate_randomization_factor(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("randomization_factor must be in [0, 1)")
        return v

    @model_validator(mode="after")
    def check_cap(self) -> "BackoffConfig":
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must not be smaller than initial_interval")
        return self


class MetricsConfig(BaseModel):
    ttl: float = 10.0
    path: str = "/metrics"

    @field_validator("ttl")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("ttl must be positive")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v


class BackendConfig(BaseModel):
    type: str = "serial"


class FrontendConfig(BaseModel):
    type: str = "prometheus"


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    serial: SerialConfig
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    frontend: FrontendConfig = Field(default_factory=FrontendConfig)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return v


def load_config(
    path: str | Path | None = None, overrides: dict[str, Any] | None = None
) -> AppConfig:
    """Load and validate configuration from a YAML file and CLI overrides."""
    raw: Any = {}
    if path is not None:
        path = Path(path)
        with path.open() as f:
            raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("config file must contain a mapping")

    raw = _walk_and_substitute(raw)
    raw = _apply_overrides(raw, overrides or {})
    return AppConfig.model_validate(raw)
