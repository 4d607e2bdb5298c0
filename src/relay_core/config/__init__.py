from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

from relay_core.errors import ConfigError


_SECTION_KEYS = ("assistant", "server", "auth", "logging")
DEFAULT_ASSISTANT_EXECUTABLE = "claude"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_MESSAGE_LENGTH = 50_000
DEFAULT_SESSION_CACHE_MAX_ENTRIES = 10_000
DEFAULT_SESSION_CACHE_TTL_SECONDS = 24 * 60 * 60
DEFAULT_TURN_WORKERS = 16
DEFAULT_SERVER_HOST = "0.0.0.0"
DEFAULT_SERVER_PORT = 3000


def _ensure_dict(value: object, *, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a table/object.")
    return dict(value)


def _ensure_optional_str(value: object, *, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string.")
    return value


def _ensure_positive_number(value: object, *, label: str, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number.")
    if value <= 0:
        raise ConfigError(f"{label} must be greater than zero.")
    return float(value)


def _ensure_positive_int(value: object, *, label: str, default: int) -> int:
    if value is None:
        return int(default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer.")
    if value <= 0:
        raise ConfigError(f"{label} must be greater than zero.")
    return value


@dataclass(frozen=True)
class AssistantConfig:
    executable: str = DEFAULT_ASSISTANT_EXECUTABLE
    model: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH
    session_cache_max_entries: int = DEFAULT_SESSION_CACHE_MAX_ENTRIES
    session_cache_ttl_seconds: float = float(DEFAULT_SESSION_CACHE_TTL_SECONDS)
    turn_workers: int = DEFAULT_TURN_WORKERS
    working_dir: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthConfig:
    token: str | None = None
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RelayConfig:
    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | dict[str, Any]) -> "RelayConfig":
        if not isinstance(payload, Mapping):
            raise ConfigError("Config payload root must be a table/object.")

        raw = dict(payload)
        missing_sections = [section for section in _SECTION_KEYS if section not in raw]
        if missing_sections:
            raise ConfigError(
                "Config payload missing required sections: " + ", ".join(missing_sections)
            )

        logging = LoggingConfig(values=_ensure_dict(raw.get("logging"), label="section 'logging'"))
        extras = {k: v for k, v in raw.items() if k not in _SECTION_KEYS}
        return cls(
            assistant=_parse_assistant(raw),
            server=_parse_server(raw),
            auth=_parse_auth(raw),
            logging=logging,
            extras=extras,
        )

    @classmethod
    def from_toml_path(cls, path: str | Path) -> "RelayConfig":
        config_path = Path(path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc
        try:
            parsed = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ConfigError("Config payload root must be a table/object.")
        return cls.from_dict(parsed)


def _parse_assistant(raw_root: dict[str, Any]) -> AssistantConfig:
    assistant_raw = _ensure_dict(raw_root.get("assistant"), label="section 'assistant'")
    executable = _ensure_optional_str(assistant_raw.pop("executable", None), label="assistant.executable")
    executable = (executable or "").strip() or DEFAULT_ASSISTANT_EXECUTABLE
    model = _ensure_optional_str(assistant_raw.pop("model", None), label="assistant.model")
    working_dir = _ensure_optional_str(assistant_raw.pop("working_dir", None), label="assistant.working_dir")
    return AssistantConfig(
        executable=executable,
        model=(model or "").strip() or None,
        timeout_seconds=_ensure_positive_number(
            assistant_raw.pop("timeout_seconds", None),
            label="assistant.timeout_seconds",
            default=DEFAULT_TIMEOUT_SECONDS,
        ),
        max_message_length=_ensure_positive_int(
            assistant_raw.pop("max_message_length", None),
            label="assistant.max_message_length",
            default=DEFAULT_MAX_MESSAGE_LENGTH,
        ),
        session_cache_max_entries=_ensure_positive_int(
            assistant_raw.pop("session_cache_max_entries", None),
            label="assistant.session_cache_max_entries",
            default=DEFAULT_SESSION_CACHE_MAX_ENTRIES,
        ),
        session_cache_ttl_seconds=_ensure_positive_number(
            assistant_raw.pop("session_cache_ttl_seconds", None),
            label="assistant.session_cache_ttl_seconds",
            default=DEFAULT_SESSION_CACHE_TTL_SECONDS,
        ),
        turn_workers=_ensure_positive_int(
            assistant_raw.pop("turn_workers", None),
            label="assistant.turn_workers",
            default=DEFAULT_TURN_WORKERS,
        ),
        working_dir=(working_dir or "").strip() or None,
        extra=assistant_raw,
    )


def parse_server_port(value: object, *, label: str = "server.port") -> int:
    if value is None:
        return DEFAULT_SERVER_PORT
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer.")
    if value <= 0 or value > 65535:
        raise ConfigError(f"{label} must be between 1 and 65535.")
    return value


def _parse_server(raw_root: dict[str, Any]) -> ServerConfig:
    server_raw = _ensure_dict(raw_root.get("server"), label="section 'server'")
    host = _ensure_optional_str(server_raw.pop("host", None), label="server.host")
    port = parse_server_port(server_raw.pop("port", None))
    return ServerConfig(host=(host or "").strip() or DEFAULT_SERVER_HOST, port=port, values=server_raw)


def _parse_auth(raw_root: dict[str, Any]) -> AuthConfig:
    auth_raw = _ensure_dict(raw_root.get("auth"), label="section 'auth'")
    token = _ensure_optional_str(auth_raw.pop("token", None), label="auth.token")
    return AuthConfig(token=token or None, values=auth_raw)


def load_relay_config(path: str | Path) -> RelayConfig:
    return RelayConfig.from_toml_path(path)


def load_relay_config_dict(payload: Mapping[str, Any] | dict[str, Any]) -> RelayConfig:
    return RelayConfig.from_dict(payload)


__all__ = [
    "AssistantConfig",
    "AuthConfig",
    "DEFAULT_ASSISTANT_EXECUTABLE",
    "DEFAULT_MAX_MESSAGE_LENGTH",
    "DEFAULT_SERVER_HOST",
    "DEFAULT_SERVER_PORT",
    "DEFAULT_SESSION_CACHE_MAX_ENTRIES",
    "DEFAULT_SESSION_CACHE_TTL_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_TURN_WORKERS",
    "LoggingConfig",
    "RelayConfig",
    "ServerConfig",
    "load_relay_config",
    "load_relay_config_dict",
    "parse_server_port",
]
