"""
Bridge configuration: YAML file with defaults.

Usage:
    config, created = load_or_create()          # ~/.config/mcp-bridge/config.yaml
    config = load("example/config.yaml")
    descriptors = config.provider_descriptors()
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mcp_bridge.errors import ConfigurationError
from mcp_bridge.models import ProviderDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "mcp-bridge"
DEFAULT_CONFIG_FILE = "config.yaml"

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant with access to various tools.

[Tools]
When using the database tool:
1. Use exact column names from the schema
2. Write valid SQL queries
3. Remember this is SQLite"""

LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class LLMConfig:
    model: str = "qwen2.5-coder-7b-instruct-128k:q6_k"
    endpoint: str = "http://localhost:11434/api"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    timeout: float = 120.0


@dataclass
class ProviderConfig:
    name: str = ""
    command: str = ""
    arguments: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    def to_descriptor(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            command=self.command,
            arguments=tuple(self.arguments),
            env=dict(self.env),
        )


@dataclass
class DatabaseConfig:
    path: str = "test.db"


@dataclass
class LoggingConfig:
    level: str = "info"


@dataclass
class BridgeSettings:
    max_turns: int = 5
    message_timeout: float = 300.0
    max_attempts: int = 3
    initial_backoff: float = 1.0
    # Numeric arguments for these fields are sent as strings.
    string_enum_fields: list[str] = field(default_factory=lambda: ["limit", "interval"])


@dataclass
class BridgeConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    providers: list[ProviderConfig] = field(default_factory=list)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    bridge: BridgeSettings = field(default_factory=BridgeSettings)

    def provider_descriptors(self) -> list[ProviderDescriptor]:
        return [p.to_descriptor() for p in self.providers]

    def validate(self) -> None:
        """Raise ConfigurationError naming the first bad field."""
        if not self.llm.model:
            raise ConfigurationError("llm.model", "is required")
        if not self.llm.endpoint:
            raise ConfigurationError("llm.endpoint", "is required")

        seen: set[str] = set()
        for i, provider in enumerate(self.providers):
            if not provider.name:
                raise ConfigurationError(f"mcp_servers[{i}].name", "is required")
            if not provider.command:
                raise ConfigurationError(f"mcp_servers[{i}].command", "is required")
            if provider.name in seen:
                raise ConfigurationError(f"mcp_servers[{i}].name", f"duplicate name {provider.name!r}")
            seen.add(provider.name)

        if not self.database.path:
            raise ConfigurationError("database.path", "is required")
        if self.logging.level.lower() not in LOG_LEVELS:
            raise ConfigurationError("logging.level", f"must be one of {', '.join(LOG_LEVELS)}")
        if self.bridge.max_turns < 1:
            raise ConfigurationError("bridge.max_turns", "must be at least 1")
        if self.bridge.max_attempts < 1:
            raise ConfigurationError("bridge.max_attempts", "must be at least 1")
        if self.bridge.message_timeout <= 0:
            raise ConfigurationError("bridge.message_timeout", "must be positive")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mcp_servers"] = data.pop("providers")
        return data


def default_config_path() -> Path:
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def from_dict(data: dict[str, Any]) -> BridgeConfig:
    """Build a validated config from parsed YAML, filling in defaults."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", "must be a mapping")

    config = BridgeConfig(
        llm=_section(LLMConfig, data, "llm"),
        database=_section(DatabaseConfig, data, "database"),
        logging=_section(LoggingConfig, data, "logging"),
        bridge=_section(BridgeSettings, data, "bridge"),
    )

    servers = data.get("mcp_servers") or []
    if not isinstance(servers, list):
        raise ConfigurationError("mcp_servers", "must be a list")
    for i, raw in enumerate(servers):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"mcp_servers[{i}]", "must be a mapping")
        arguments = raw.get("arguments") or []
        env = raw.get("env") or {}
        if not isinstance(arguments, list):
            raise ConfigurationError(f"mcp_servers[{i}].arguments", "must be a list")
        if not isinstance(env, dict):
            raise ConfigurationError(f"mcp_servers[{i}].env", "must be a mapping")
        config.providers.append(ProviderConfig(
            name=str(raw.get("name") or ""),
            command=str(raw.get("command") or ""),
            arguments=[str(a) for a in arguments],
            env={str(k): "" if v is None else str(v) for k, v in env.items()},
        ))

    config.validate()
    return config


def load(path: str | Path) -> BridgeConfig:
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigurationError(str(path), f"failed to read config file: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(str(path), f"failed to parse config file: {e}") from e
    logger.debug(f"Loaded config from {path}")
    return from_dict(data)


def save(config: BridgeConfig, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.to_dict(), sort_keys=False))


def load_or_create(path: str | Path | None = None) -> tuple[BridgeConfig, bool]:
    """Load the config file, writing a default one first if it is missing."""
    path = Path(path) if path else default_config_path()
    if not path.exists():
        config = BridgeConfig()
        save(config, path)
        logger.info(f"Wrote default config to {path}")
        return config, True
    return load(path), False


def _section(cls, data: dict[str, Any], key: str):
    raw = data.get(key) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(key, "must be a mapping")
    known = set(cls.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"{key}.{sorted(unknown)[0]}", "unknown setting")

    defaults = cls()
    values = {}
    for name, value in raw.items():
        default = getattr(defaults, name)
        try:
            if isinstance(default, (int, float)) and not isinstance(default, bool):
                value = type(default)(value)
            elif isinstance(default, str):
                value = "" if value is None else str(value)
            elif isinstance(default, list) and not isinstance(value, list):
                raise TypeError(f"expected a list, got {type(value).__name__}")
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{key}.{name}", str(e)) from e
        values[name] = value
    return cls(**values)
