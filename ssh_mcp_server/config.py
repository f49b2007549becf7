"""
配置管理模块

管理 SSH 连接配置和应用设置。连接配置在启动时加载，之后只读。
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .errors import ConfigError

logger = logging.getLogger(__name__)

SOCKS_SCHEMES = ("socks", "socks4", "socks4a", "socks5", "socks5h")

# 兼容原有配置文件中的 camelCase 键名
_KEY_ALIASES = {
    "user": "username",
    "privateKey": "private_key_path",
    "private_key": "private_key_path",
    "privateKeyPath": "private_key_path",
    "key_filename": "private_key_path",
    "socksProxy": "socks_proxy",
    "commandWhitelist": "command_whitelist",
    "whitelist": "command_whitelist",
    "commandBlacklist": "command_blacklist",
    "blacklist": "command_blacklist",
}

_CONNECTION_KEYS = {
    "host",
    "port",
    "username",
    "password",
    "private_key_path",
    "passphrase",
    "socks_proxy",
    "command_whitelist",
    "command_blacklist",
}


@dataclass(frozen=True)
class ConnectionConfig:
    """单个命名连接的配置"""

    name: str
    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    socks_proxy: Optional[str] = None
    command_whitelist: Tuple[str, ...] = ()
    command_blacklist: Tuple[str, ...] = ()

    @property
    def auth_method(self) -> Optional[str]:
        if self.private_key_path:
            return "key"
        if self.password:
            return "password"
        return None

    def __repr__(self) -> str:
        # 不输出密码和口令
        return (
            f"ConnectionConfig(name={self.name!r}, host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, auth_method={self.auth_method!r})"
        )


def _pattern_list(name: str, key: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [p.strip() for p in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"Connection {name!r}: {key} must be a list of patterns")
    patterns = []
    for pattern in value:
        if not isinstance(pattern, str):
            raise ConfigError(f"Connection {name!r}: {key} entries must be strings")
        if pattern:
            patterns.append(pattern)
    return tuple(patterns)


def validate_socks_proxy(name: str, url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme.lower() not in SOCKS_SCHEMES or not parsed.hostname:
        raise ConfigError(
            f"Connection {name!r}: unsupported SOCKS proxy {url!r}, "
            "expected socks5://[user:pass@]host:port"
        )
    try:
        parsed.port
    except ValueError as e:
        raise ConfigError(f"Connection {name!r}: invalid SOCKS proxy port: {e}") from e
    return url


def parse_connection(name: str, data: Mapping[str, Any]) -> ConnectionConfig:
    """从字典创建连接配置"""
    if not name:
        raise ConfigError("Connection name must not be empty")
    if not isinstance(data, Mapping):
        raise ConfigError(f"Connection {name!r}: configuration must be an object")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        key = _KEY_ALIASES.get(key, key)
        if key == "name":
            continue
        if key not in _CONNECTION_KEYS:
            logger.warning(f"连接 {name} 的配置项 {key} 未知，已忽略")
            continue
        values[key] = value

    for required in ("host", "username"):
        if not values.get(required):
            raise ConfigError(f"Connection {name!r}: missing required field {required!r}")

    try:
        port = int(values.get("port", 22))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Connection {name!r}: port must be a number") from e
    if not 0 < port < 65536:
        raise ConfigError(f"Connection {name!r}: port {port} out of range")

    socks_proxy = values.get("socks_proxy")
    if socks_proxy:
        validate_socks_proxy(name, socks_proxy)

    return ConnectionConfig(
        name=name,
        host=str(values["host"]),
        username=str(values["username"]),
        port=port,
        password=values.get("password") or None,
        private_key_path=values.get("private_key_path") or None,
        passphrase=values.get("passphrase") or None,
        socks_proxy=socks_proxy or None,
        command_whitelist=_pattern_list(name, "command_whitelist", values.get("command_whitelist")),
        command_blacklist=_pattern_list(name, "command_blacklist", values.get("command_blacklist")),
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass
class AppConfig:
    """应用配置"""

    log_level: str = "INFO"
    default_timeout: float = 30
    connect_timeout: float = 30
    keepalive_interval: int = 60
    monitor_interval: float = 2.0
    reconnect_max_attempts: int = 10
    reconnect_base_delay: float = 5.0
    pre_connect: bool = True
    default_connection: Optional[str] = None
    connections: Dict[str, ConnectionConfig] = field(default_factory=dict)

    _SETTINGS = (
        ("log_level", str),
        ("default_timeout", float),
        ("connect_timeout", float),
        ("keepalive_interval", int),
        ("monitor_interval", float),
        ("reconnect_max_attempts", int),
        ("reconnect_base_delay", float),
        ("pre_connect", _as_bool),
        ("default_connection", str),
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        """从环境变量创建配置"""
        try:
            return cls(
                log_level=os.getenv("MCP_SSH_LOG_LEVEL", "INFO"),
                default_timeout=float(os.getenv("MCP_SSH_TIMEOUT", "30")),
                connect_timeout=float(os.getenv("MCP_SSH_CONNECT_TIMEOUT", "30")),
                keepalive_interval=int(os.getenv("MCP_SSH_KEEPALIVE", "60")),
                monitor_interval=float(os.getenv("MCP_SSH_MONITOR_INTERVAL", "2")),
                reconnect_max_attempts=int(os.getenv("MCP_SSH_RECONNECT_ATTEMPTS", "10")),
                reconnect_base_delay=float(os.getenv("MCP_SSH_RECONNECT_DELAY", "5")),
                pre_connect=_as_bool(os.getenv("MCP_SSH_PRE_CONNECT", "true")),
                default_connection=os.getenv("MCP_SSH_DEFAULT_CONNECTION") or None,
            )
        except ValueError as e:
            raise ConfigError(f"Invalid MCP_SSH_* environment value: {e}") from e

    @classmethod
    def from_file(cls, config_path: str, base: Optional["AppConfig"] = None) -> "AppConfig":
        """从 JSON 配置文件创建配置"""
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")

        config = cls.from_dict(data, base=base)
        logger.info(f"已加载配置文件: {config_path}")
        return config

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["AppConfig"] = None) -> "AppConfig":
        config = base if base is not None else cls.from_env()

        if "defaultConnection" in data and "default_connection" not in data:
            data = dict(data, default_connection=data["defaultConnection"])

        for key, kind in cls._SETTINGS:
            if key in data and data[key] is not None:
                try:
                    setattr(config, key, kind(data[key]))
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"Invalid value for {key}: {data[key]!r}") from e

        connections = data.get("connections", {})
        if isinstance(connections, list):
            connections = {c.get("name", ""): c for c in connections}
        if not isinstance(connections, Mapping):
            raise ConfigError("connections must be an object keyed by connection name")
        for name, conn_data in connections.items():
            config.add_connection(parse_connection(name, conn_data))

        return config

    def add_connection(self, connection: ConnectionConfig) -> None:
        """添加连接配置"""
        if connection.name in self.connections:
            raise ConfigError(f"Duplicate connection name: {connection.name}")
        self.connections[connection.name] = connection

    def resolve_default(self) -> str:
        """返回默认连接名称"""
        if self.default_connection:
            if self.default_connection not in self.connections:
                raise ConfigError(
                    f"Default connection {self.default_connection!r} is not configured"
                )
            return self.default_connection
        if not self.connections:
            raise ConfigError("No SSH connection configured")
        return next(iter(self.connections))
