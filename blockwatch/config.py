"""Shared configuration loader for blockwatch."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".blockwatch.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

ENV_PREFIX = "BLOCKWATCH_RPC_"


@dataclass
class RPCConfig:
    """Configuration container for node RPC connection details."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = 14022
    use_https: bool = False
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class WatchConfig:
    """Polling parameters for the ``watch`` loop.

    ``start_height`` of ``None`` means "start from the tip observed at launch".
    """

    start_height: int | None = None
    period_seconds: float = 10.0
    max_blocks_per_poll: int | None = None
    max_consecutive_failures: int | None = None

    def __post_init__(self) -> None:
        if self.period_seconds <= 0:
            raise ConfigurationError(f"period_seconds must be positive, got {self.period_seconds}")
        if self.start_height is not None and self.start_height < 0:
            raise ConfigurationError(f"start_height must be non-negative, got {self.start_height}")
        if self.max_blocks_per_poll is not None and self.max_blocks_per_poll < 1:
            raise ConfigurationError(
                f"max_blocks_per_poll must be at least 1, got {self.max_blocks_per_poll}"
            )
        if self.max_consecutive_failures is not None and self.max_consecutive_failures < 0:
            raise ConfigurationError(
                f"max_consecutive_failures must be non-negative, got {self.max_consecutive_failures}"
            )


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _resolve_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )
    return path, explicit


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    try:
        port = parsed.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in RPC endpoint URL: {raw}") from exc
    return parsed.hostname, port, parsed.scheme.lower() == "https"


def load_rpc_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RPCConfig:
    """Load RPC configuration from overrides, environment variables and optional YAML.

    Precedence is overrides, then ``BLOCKWATCH_RPC_*`` variables, then the
    ``rpc`` section of the config file, then built-in defaults.
    """

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    override_map = dict(overrides or {})

    def env_value(name: str) -> str | None:
        return env_map.get(ENV_PREFIX + name) or None

    env_endpoint = env_value("ENDPOINT") or env_value("URL")
    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(override_map.get("endpoint"), env_endpoint, rpc_section.get("endpoint"))
    )

    resolved_user = _first_value(override_map.get("user"), env_value("USER"), rpc_section.get("user"))
    resolved_password = _first_value(
        override_map.get("password"), env_value("PASSWORD"), rpc_section.get("password")
    )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            "RPC credentials must be provided via BLOCKWATCH_RPC_* environment variables or a config file"
        )

    resolved_host = _first_value(
        override_map.get("host"), endpoint_host, env_value("HOST"), rpc_section.get("host"), "127.0.0.1"
    )
    resolved_port = _first_value(
        _coerce_int(override_map.get("port"), source="overrides"),
        endpoint_port,
        _coerce_int(env_value("PORT"), source="environment"),
        _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port"),
        14022,
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        _coerce_bool(env_value("USE_HTTPS")),
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_timeout = _first_value(
        _coerce_float(override_map.get("timeout"), source="overrides"),
        _coerce_float(env_value("TIMEOUT"), source="environment"),
        _coerce_float(rpc_section.get("timeout"), source=f"{path} rpc.timeout"),
        30.0,
    )

    return RPCConfig(
        user=str(resolved_user),
        password=str(resolved_password),
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        timeout=resolved_timeout,
    )


def load_watch_config(
    *,
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> WatchConfig:
    """Load polling parameters from the ``watch`` section, applying CLI overrides."""

    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    watch_section = _section(file_config, "watch", path)
    override_map = dict(overrides or {})

    def pick(key: str) -> Any:
        return _first_value(override_map.get(key), watch_section.get(key))

    source = f"{path} watch"
    period = _coerce_float(pick("period_seconds"), source=f"{source}.period_seconds")
    return WatchConfig(
        start_height=_coerce_int(pick("start_height"), source=f"{source}.start_height"),
        period_seconds=period if period is not None else 10.0,
        max_blocks_per_poll=_coerce_int(
            pick("max_blocks_per_poll"), source=f"{source}.max_blocks_per_poll"
        ),
        max_consecutive_failures=_coerce_int(
            pick("max_consecutive_failures"), source=f"{source}.max_consecutive_failures"
        ),
    )
