"""
错误类型

网关内部抛出的结构化异常，协议适配层据此返回 (错误类型, 消息) 而不是原始传输异常。
"""

from typing import Dict, Optional


class GatewayError(Exception):
    """网关错误基类"""

    kind = "GatewayError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        """转换为结构化失败结果"""
        return {"error": self.kind, "message": self.message}


class ConfigError(GatewayError):
    """连接配置缺失或无效，或私钥文件无法读取"""

    kind = "ConfigError"


class AuthConfigError(ConfigError):
    """未配置任何认证方式"""

    kind = "AuthConfigError"


class AuthError(GatewayError):
    """远端拒绝了凭据"""

    kind = "AuthError"


class SSHConnectionError(GatewayError, ConnectionError):
    """握手或网络失败"""

    kind = "ConnectionError"

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class PolicyViolation(GatewayError):
    """命令被安全策略拒绝"""

    kind = "PolicyViolation"

    def __init__(self, reason: str, command: Optional[str] = None):
        super().__init__(f"Command validation failed: {reason}")
        self.reason = reason
        self.command = command


class PathTraversalError(GatewayError):
    """本地路径超出允许的根目录"""

    kind = "PathTraversalError"

    def __init__(self, path: str, root: str):
        super().__init__(f"Local path {path!r} escapes the allowed root {root!r}")
        self.path = path
        self.root = root


class CommandExecutionError(GatewayError):
    """远程命令以非零退出码结束"""

    kind = "CommandExecutionError"

    def __init__(self, exit_code: int, stderr: str):
        super().__init__(
            f"Command execution failed, exit code: {exit_code}, error: {stderr}"
        )
        self.exit_code = exit_code
        self.stderr = stderr


class StreamError(GatewayError):
    kind = "StreamError"


class TransferError(GatewayError):
    kind = "TransferError"


class CommandTimeoutError(GatewayError, TimeoutError):
    """调用方等待超时，远程命令可能仍在运行"""

    kind = "TimeoutError"

    def __init__(self, command: str, timeout: float):
        super().__init__(
            f"Command did not finish within {timeout}s (it may still be running remotely): {command}"
        )
        self.command = command
        self.timeout = timeout
