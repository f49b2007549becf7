"""
SSH 连接注册表

管理多个命名连接的生命周期：建立、保持、断线重连、断开，
并在命令和文件传输到达远程主机之前完成策略和路径检查。

所有状态修改都发生在事件循环线程上、两次 await 之间，因此不需要加锁。
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .auth import Authenticator
from .config import AppConfig, ConnectionConfig
from .errors import CommandTimeoutError, ConfigError, GatewayError, SSHConnectionError
from .executor import CommandExecutor
from .models import ConnectionInfo, ConnectionStatus, TransferOperation, TransferResult
from .policy import CommandPolicyEngine
from .reconnect import ReconnectScheduler
from .session import SSHSession
from .transfer import FileTransfer, TransferGuard

logger = logging.getLogger(__name__)


@dataclass
class ConnectionState:
    """单个连接名的运行状态"""

    config: ConnectionConfig
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    session: Optional[Any] = None
    reconnect_attempts: int = 0
    manual_disconnect: bool = False
    pending: Optional[asyncio.Task] = None
    monitor: Optional[asyncio.Task] = None
    # 每次主动断开时递增，用于丢弃断开前发起的连接结果
    generation: int = 0


class ConnectionRegistry:
    """连接注册表"""

    def __init__(
        self,
        config: AppConfig,
        *,
        session_factory: Optional[Callable[[ConnectionConfig], Any]] = None,
        authenticator: Optional[Authenticator] = None,
        policy: Optional[CommandPolicyEngine] = None,
        guard: Optional[TransferGuard] = None,
        transfer: Optional[FileTransfer] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        self.config = config
        self.authenticator = authenticator or Authenticator(config.connect_timeout)
        self.policy = policy or CommandPolicyEngine()
        self.guard = guard or TransferGuard()
        self.transfer = transfer or FileTransfer()
        self.executor = executor or CommandExecutor()
        self.scheduler = ReconnectScheduler(
            self._reconnect,
            max_attempts=config.reconnect_max_attempts,
            base_delay=config.reconnect_base_delay,
        )
        self._session_factory = session_factory or self._default_session_factory
        self.connections: Dict[str, ConnectionState] = {}
        self._background: Set[asyncio.Task] = set()
        self._commands: Set[asyncio.Task] = set()

        for connection in list(config.connections.values()):
            self.register(connection)

    def _default_session_factory(self, config: ConnectionConfig) -> SSHSession:
        return SSHSession(config, keepalive_interval=self.config.keepalive_interval)

    def register(self, connection: ConnectionConfig) -> ConnectionState:
        """登记连接配置，初始状态为断开"""
        if connection.name in self.connections:
            raise ConfigError(f"Duplicate connection name: {connection.name}")
        self.policy.load(connection)
        if connection.name not in self.config.connections:
            self.config.add_connection(connection)
        state = ConnectionState(config=connection)
        self.connections[connection.name] = state
        return state

    def _state(self, name: Optional[str] = None) -> ConnectionState:
        if not name:
            name = self.config.resolve_default()
        state = self.connections.get(name)
        if state is None:
            raise ConfigError(f"SSH connection not configured: {name}")
        return state

    def get_config(self, name: Optional[str] = None) -> ConnectionConfig:
        """获取连接配置，未指定名称时使用默认连接"""
        return self._state(name).config

    # --- 生命周期 ---

    async def connect(self, name: Optional[str] = None):
        """建立连接，已就绪时直接返回会话"""
        state = self._state(name)
        if state.status is ConnectionStatus.READY and state.session is not None:
            return state.session
        if state.pending is None:
            state.manual_disconnect = False
            state.pending = asyncio.ensure_future(self._open(state))
        return await asyncio.shield(state.pending)

    async def ensure_connected(self, name: Optional[str] = None):
        """返回可用的会话，必要时先建立连接"""
        state = self._state(name)
        session = state.session
        if (
            state.status is ConnectionStatus.READY
            and session is not None
            and not session.is_active()
        ):
            logger.warning(f"连接 {state.config.name} 的会话已失效")
            self._session_lost(state.config.name, session)
        return await self.connect(state.config.name)

    async def _open(self, state: ConnectionState):
        name = state.config.name
        generation = state.generation
        loop = asyncio.get_running_loop()
        state.status = ConnectionStatus.CONNECTING
        logger.info(f"正在连接 {name}: {state.config.username}@{state.config.host}:{state.config.port}")

        try:
            connect_kwargs = self.authenticator.resolve(state.config)
            session = self._session_factory(state.config)
            await loop.run_in_executor(None, session.open, connect_kwargs)
        except BaseException as e:
            if isinstance(e, GatewayError):
                logger.error(f"连接 {name} 建立失败: {e}")
            if state.generation == generation:
                state.status = ConnectionStatus.DISCONNECTED
            raise
        finally:
            if state.pending is asyncio.current_task():
                state.pending = None

        if state.generation != generation:
            # 连接过程中被主动断开
            await self._close_session(session)
            raise SSHConnectionError(f"Connection {name} was closed while connecting")

        state.session = session
        state.status = ConnectionStatus.READY
        state.reconnect_attempts = 0
        state.monitor = asyncio.ensure_future(self._monitor(name, session))
        logger.info(f"连接 {name} 已就绪")
        return session

    async def _monitor(self, name: str, session) -> None:
        """定期检查会话是否仍然存活"""
        while True:
            await asyncio.sleep(self.config.monitor_interval)
            if not session.is_active():
                logger.warning(f"连接 {name} 的会话意外关闭")
                self._session_lost(name, session)
                return

    def _session_lost(self, name: str, session) -> bool:
        """处理会话关闭事件，非主动断开时交给重连调度器"""
        state = self.connections.get(name)
        if state is None or state.session is not session:
            return False

        was_ready = state.status is ConnectionStatus.READY
        state.session = None
        state.status = ConnectionStatus.DISCONNECTED
        monitor, state.monitor = state.monitor, None
        if monitor is not None and monitor is not asyncio.current_task():
            monitor.cancel()
        closing = asyncio.ensure_future(self._close_session(session))
        self._background.add(closing)
        closing.add_done_callback(self._background.discard)

        if was_ready and not state.manual_disconnect:
            self.scheduler.schedule(state)
        return True

    async def _reconnect(self, name: str) -> None:
        state = self.connections.get(name)
        if state is None or state.manual_disconnect:
            return
        if state.status is not ConnectionStatus.DISCONNECTED or state.pending is not None:
            return

        logger.info(f"连接 {name} 开始第 {state.reconnect_attempts} 次重连")
        state.pending = asyncio.ensure_future(self._open(state))
        try:
            await state.pending
        except GatewayError as e:
            logger.warning(f"连接 {name} 重连失败: {e}")
            # 失败的重连视为又一次非主动断开
            if not state.manual_disconnect and state.status is ConnectionStatus.DISCONNECTED:
                self.scheduler.schedule(state)

    async def _close_session(self, session) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, session.close)
        except Exception as e:
            logger.warning(f"关闭 SSH 会话时出错: {e}")

    async def disconnect(
        self, name: Optional[str] = None, all_connections: bool = False
    ) -> List[str]:
        """主动断开连接，返回被断开的连接名"""
        if all_connections:
            names = list(self.connections)
        else:
            names = [self._state(name).config.name]

        sessions = []
        for conn_name in names:
            state = self.connections[conn_name]
            state.manual_disconnect = True
            self.scheduler.cancel(conn_name)
            state.generation += 1
            state.pending = None
            monitor, state.monitor = state.monitor, None
            if monitor is not None:
                monitor.cancel()
            if state.session is not None:
                sessions.append(state.session)
            state.session = None
            state.status = ConnectionStatus.DISCONNECTED

        for session in sessions:
            await self._close_session(session)
        if names:
            logger.info(f"已断开连接: {', '.join(names)}")
        return names

    async def connect_all(self) -> Dict[str, bool]:
        """启动时预连接所有配置的连接，失败只记录日志"""
        names = list(self.connections)
        results = await asyncio.gather(
            *(self.connect(name) for name in names), return_exceptions=True
        )
        status = {}
        for name, result in zip(names, results):
            if isinstance(result, GatewayError):
                logger.error(f"预连接 {name} 失败: {result}")
                status[name] = False
            elif isinstance(result, BaseException):
                raise result
            else:
                status[name] = True
        return status

    def list_connections(self) -> List[ConnectionInfo]:
        """列出所有连接状态"""
        return [
            ConnectionInfo(
                name=name,
                host=state.config.host,
                port=state.config.port,
                username=state.config.username,
                connected=state.status is ConnectionStatus.READY,
            )
            for name, state in self.connections.items()
        ]

    async def shutdown(self) -> None:
        """关闭所有连接"""
        self.scheduler.cancel_all()
        commands = list(self._commands)
        for task in commands:
            task.cancel()
        if commands:
            await asyncio.gather(*commands, return_exceptions=True)
        await self.executor.shutdown()
        await self.disconnect(all_connections=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.connections.clear()
        logger.info("SSH 连接注册表已关闭")

    # --- 操作 ---

    async def _run_on_session(self, name: str, session, func, *args):
        """在线程池中执行阻塞的会话操作，会话已失效时登记断开"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except SSHConnectionError:
            if not session.is_active():
                self._session_lost(name, session)
            raise

    async def execute_command(
        self, command: str, name: Optional[str] = None, timeout: Optional[float] = None
    ) -> str:
        """在指定连接上执行命令，返回标准输出

        timeout 覆盖建立连接、打开通道和等待输出的全过程。
        超时后调用方立即返回，命令在后台继续执行。
        """
        config = self.get_config(name)
        self.policy.check(command, config)

        task = asyncio.ensure_future(self._execute(config.name, command))
        self._commands.add(task)
        task.add_done_callback(self._command_done)

        if timeout is None:
            return await task
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"连接 {config.name} 上的命令等待超时 ({timeout}s): {command}")
            raise CommandTimeoutError(command, timeout) from None

    async def _execute(self, name: str, command: str) -> str:
        session = await self.ensure_connected(name)
        channel = await self._run_on_session(name, session, session.open_command_channel, command)
        logger.info(f"在连接 {name} 上执行命令: {command}")
        return await self.executor.run(channel, command)

    def _command_done(self, task: asyncio.Task) -> None:
        self._commands.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"后台命令结束: {task.exception()}")

    async def upload(
        self, local_path: str, remote_path: str, name: Optional[str] = None
    ) -> TransferResult:
        """上传文件到指定连接"""
        config = self.get_config(name)
        local = self.guard.validate_local_path(local_path)
        session = await self.ensure_connected(config.name)

        start = time.time()
        size = await self._run_on_session(
            config.name, session, self.transfer.upload, session, local, remote_path
        )
        return TransferResult(
            connection=config.name,
            operation=TransferOperation.UPLOAD,
            local_path=local,
            remote_path=remote_path,
            bytes_transferred=size,
            transfer_time=time.time() - start,
        )

    async def download(
        self, remote_path: str, local_path: str, name: Optional[str] = None
    ) -> TransferResult:
        """从指定连接下载文件"""
        config = self.get_config(name)
        local = self.guard.validate_local_path(local_path)
        session = await self.ensure_connected(config.name)

        start = time.time()
        size = await self._run_on_session(
            config.name, session, self.transfer.download, session, remote_path, local
        )
        return TransferResult(
            connection=config.name,
            operation=TransferOperation.DOWNLOAD,
            local_path=local,
            remote_path=remote_path,
            bytes_transferred=size,
            transfer_time=time.time() - start,
        )
