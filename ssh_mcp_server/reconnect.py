"""
断线重连调度

只在会话非主动断开时启用。延迟按尝试次数线性增长，超过最大次数后放弃，
连接保持断开状态直到下一次显式连接。
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class ReconnectScheduler:
    """重连调度器，每个连接名最多一个待触发的定时器"""

    def __init__(
        self,
        reconnect: Callable[[str], Awaitable[None]],
        max_attempts: int = 10,
        base_delay: float = 5.0,
    ):
        self._reconnect = reconnect
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def schedule(self, state) -> bool:
        """登记一次非主动断开，返回是否安排了重连"""
        name = state.config.name
        state.reconnect_attempts += 1
        attempt = state.reconnect_attempts

        if attempt > self.max_attempts:
            logger.error(
                f"连接 {name} 重连失败次数已达上限 ({self.max_attempts})，停止重连"
            )
            self.cancel(name)
            return False

        delay = self.delay_for(attempt)
        self.cancel(name)
        loop = asyncio.get_running_loop()
        self._timers[name] = loop.call_later(delay, self._fire, name)
        logger.info(f"连接 {name} 将在 {delay:g}s 后进行第 {attempt}/{self.max_attempts} 次重连")
        return True

    def _fire(self, name: str) -> None:
        self._timers.pop(name, None)
        task = asyncio.ensure_future(self._reconnect(name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def pending(self, name: str) -> bool:
        return name in self._timers

    def cancel(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()
            logger.debug(f"已取消连接 {name} 的重连定时器")

    def cancel_all(self) -> None:
        for name in list(self._timers):
            self.cancel(name)
        for task in list(self._tasks):
            task.cancel()
