"""
命令执行器

在已打开的命令通道上增量收集标准输出和标准错误，直到通道报告退出码。
超时只停止本地等待，收集任务继续运行直到远程命令结束。
"""

import asyncio
import logging
import socket
from typing import List, Optional, Set

import paramiko

from .errors import CommandExecutionError, CommandTimeoutError, StreamError

logger = logging.getLogger(__name__)

RECV_SIZE = 32768

# paramiko.Channel 未收到 exit-status 时 recv_exit_status() 的返回值
NO_EXIT_STATUS = -1


class CommandExecutor:
    """命令执行器"""

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval
        self._collectors: Set[asyncio.Task] = set()

    async def run(self, channel, command: str, timeout: Optional[float] = None) -> str:
        """等待命令结束，成功时返回标准输出"""
        task = asyncio.ensure_future(self._collect(channel, command))
        self._collectors.add(task)
        task.add_done_callback(self._collector_done)

        if timeout is None:
            exit_code, stdout, stderr = await task
        else:
            try:
                exit_code, stdout, stderr = await asyncio.wait_for(
                    asyncio.shield(task), timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"命令等待超时 ({timeout}s)，远程命令可能仍在运行: {command}")
                raise CommandTimeoutError(command, timeout) from None

        if exit_code != 0:
            logger.info(f"命令退出码 {exit_code}: {command}")
            raise CommandExecutionError(exit_code, stderr)
        return stdout

    def _collector_done(self, task: asyncio.Task) -> None:
        self._collectors.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # 超时后没有调用方再等待这个任务
            logger.debug(f"命令收集任务结束: {task.exception()}")

    async def _collect(self, channel, command: str):
        stdout: List[bytes] = []
        stderr: List[bytes] = []
        try:
            while True:
                if self._drain(channel, stdout, stderr):
                    await asyncio.sleep(0)
                    continue
                # 通道关闭时 paramiko 同样报告 exit_status_ready
                if channel.exit_status_ready():
                    # 退出状态之前到达的数据已经在缓冲区中
                    self._drain(channel, stdout, stderr)
                    break
                await asyncio.sleep(self.poll_interval)
            exit_code = channel.recv_exit_status()
            if exit_code == NO_EXIT_STATUS and channel.closed:
                raise StreamError(
                    f"Stream error: channel closed before exit status was received: {command}"
                )
        except (socket.error, paramiko.SSHException, EOFError) as e:
            raise StreamError(f"Stream error: {e}") from e
        finally:
            channel.close()

        return (
            exit_code,
            b"".join(stdout).decode("utf-8", errors="replace"),
            b"".join(stderr).decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _drain(channel, stdout: List[bytes], stderr: List[bytes]) -> bool:
        received = False
        while channel.recv_ready():
            data = channel.recv(RECV_SIZE)
            if not data:
                break
            stdout.append(data)
            received = True
        while channel.recv_stderr_ready():
            data = channel.recv_stderr(RECV_SIZE)
            if not data:
                break
            stderr.append(data)
            received = True
        return received

    async def shutdown(self) -> None:
        """取消仍在收集输出的任务"""
        tasks = list(self._collectors)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
