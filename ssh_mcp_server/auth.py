"""
认证模块

把连接配置中的一种凭据解析为 paramiko 的连接参数。
私钥优先于密码，每次尝试只使用一种认证方式。
"""

import io
import logging
from typing import Any, Dict, Optional

import paramiko

from .config import ConnectionConfig
from .errors import AuthConfigError, AuthError, ConfigError

logger = logging.getLogger(__name__)

KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


class Authenticator:
    """凭据解析器"""

    def __init__(self, connect_timeout: float = 30):
        self.connect_timeout = connect_timeout

    def resolve(self, config: ConnectionConfig) -> Dict[str, Any]:
        """生成 SSHClient.connect 的参数"""
        connect_kwargs: Dict[str, Any] = {
            "hostname": config.host,
            "port": config.port,
            "username": config.username,
            "timeout": self.connect_timeout,
            "banner_timeout": self.connect_timeout,
            "auth_timeout": self.connect_timeout,
            "look_for_keys": False,
            "allow_agent": False,
        }

        if config.private_key_path:
            key_data = self._read_key_file(config)
            connect_kwargs["pkey"] = self._load_private_key(
                config, key_data, config.passphrase
            )
            logger.info(f"连接 {config.name} 使用私钥认证")
        elif config.password:
            connect_kwargs["password"] = config.password
            logger.info(f"连接 {config.name} 使用密码认证")
        else:
            raise AuthConfigError(
                f"No valid authentication method provided for {config.name!r} "
                "(password or private key)"
            )

        return connect_kwargs

    def _read_key_file(self, config: ConnectionConfig) -> str:
        try:
            with open(config.private_key_path, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(
                f"Failed to read private key file {config.private_key_path}: {e}"
            ) from e

    def _load_private_key(
        self, config: ConnectionConfig, key_data: str, passphrase: Optional[str]
    ) -> paramiko.PKey:
        """依次尝试各类私钥格式"""
        last_error: Optional[Exception] = None
        for key_class in KEY_CLASSES:
            try:
                return key_class.from_private_key(io.StringIO(key_data), password=passphrase)
            except paramiko.PasswordRequiredException as e:
                raise AuthError(
                    f"Private key {config.private_key_path} is encrypted and needs a passphrase"
                ) from e
            except (paramiko.SSHException, ValueError) as e:
                last_error = e
                continue
        raise ConfigError(
            f"Unsupported or invalid private key {config.private_key_path}: {last_error}"
        )
