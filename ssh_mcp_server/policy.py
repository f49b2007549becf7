"""
命令安全策略

在命令发送到远程 shell 之前进行检查，顺序固定：
命令串联字符 -> 白名单 -> 黑名单。
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple

from .config import ConnectionConfig
from .errors import ConfigError, PolicyViolation

logger = logging.getLogger(__name__)

CHAINING_CHARACTERS = (";", "&", "|")

REASON_CHAINING = "command chaining not allowed"
REASON_NOT_WHITELISTED = "not in whitelist"
REASON_BLACKLISTED = "matches blacklist"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = PolicyDecision(allowed=True)


@dataclass(frozen=True)
class CompiledPolicy:
    whitelist: Tuple[Pattern[str], ...] = ()
    blacklist: Tuple[Pattern[str], ...] = ()


def _compile(config: ConnectionConfig, label: str, patterns: Tuple[str, ...]) -> Tuple[Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ConfigError(
                f"Connection {config.name!r}: invalid {label} pattern {pattern!r}: {e}"
            ) from e
    return tuple(compiled)


class CommandPolicyEngine:
    """命令策略引擎，每个连接配置的正则只编译一次"""

    def __init__(self):
        self._compiled: Dict[str, Tuple[ConnectionConfig, CompiledPolicy]] = {}

    def load(self, config: ConnectionConfig) -> CompiledPolicy:
        """编译并缓存连接的白名单和黑名单"""
        policy = CompiledPolicy(
            whitelist=_compile(config, "whitelist", config.command_whitelist),
            blacklist=_compile(config, "blacklist", config.command_blacklist),
        )
        self._compiled[config.name] = (config, policy)
        if policy.whitelist or policy.blacklist:
            logger.info(
                f"连接 {config.name} 的命令策略已加载: "
                f"白名单 {len(policy.whitelist)} 条, 黑名单 {len(policy.blacklist)} 条"
            )
        return policy

    def _policy_for(self, config: ConnectionConfig) -> CompiledPolicy:
        cached = self._compiled.get(config.name)
        if cached is None or cached[0] is not config:
            return self.load(config)
        return cached[1]

    def validate(self, command: str, config: ConnectionConfig) -> PolicyDecision:
        if any(ch in command for ch in CHAINING_CHARACTERS):
            return PolicyDecision(allowed=False, reason=REASON_CHAINING)

        policy = self._policy_for(config)

        if policy.whitelist and not any(p.search(command) for p in policy.whitelist):
            return PolicyDecision(allowed=False, reason=REASON_NOT_WHITELISTED)

        if policy.blacklist and any(p.search(command) for p in policy.blacklist):
            return PolicyDecision(allowed=False, reason=REASON_BLACKLISTED)

        return ALLOWED

    def check(self, command: str, config: ConnectionConfig) -> None:
        """拒绝时抛出 PolicyViolation"""
        decision = self.validate(command, config)
        if not decision.allowed:
            logger.warning(f"连接 {config.name} 拒绝执行命令 ({decision.reason}): {command}")
            raise PolicyViolation(decision.reason, command)
