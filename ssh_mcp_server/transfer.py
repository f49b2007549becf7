"""
文件传输

本地路径校验（不允许超出工作目录）和基于 SFTP 通道的流式上传/下载。
SFTP 通道在任何退出路径上都会被关闭。
"""

import logging
import os
from typing import Callable, Optional

import paramiko

from .errors import PathTraversalError, TransferError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 32768

TRANSFER_ERRORS = (OSError, EOFError, paramiko.SSHException)


class TransferGuard:
    """本地路径守卫"""

    def __init__(self, root: Optional[str] = None):
        self._root = root

    @property
    def root(self) -> str:
        return os.path.abspath(self._root if self._root is not None else os.getcwd())

    def validate_local_path(self, path: str) -> str:
        """返回解析后的绝对路径，超出根目录时抛出 PathTraversalError"""
        root = self.root
        resolved = os.path.abspath(os.path.join(root, os.path.expanduser(path)))
        try:
            inside = os.path.commonpath([root, resolved]) == root
        except ValueError:
            # 不同驱动器 (Windows)
            inside = False
        if not inside:
            logger.warning(f"拒绝访问工作目录之外的本地路径: {path}")
            raise PathTraversalError(path, root)
        return resolved


def _copy(read: Callable[[int], bytes], write: Callable[[bytes], object], chunk_size: int) -> int:
    total = 0
    while True:
        chunk = read(chunk_size)
        if not chunk:
            return total
        write(chunk)
        total += len(chunk)


class FileTransfer:
    """SFTP 流式传输，阻塞调用"""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def upload(self, session, local_path: str, remote_path: str) -> int:
        """上传本地文件，返回传输字节数"""
        sftp = session.open_sftp()
        try:
            with open(local_path, "rb") as local_file:
                with sftp.open(remote_path, "wb") as remote_file:
                    remote_file.set_pipelined(True)
                    size = _copy(local_file.read, remote_file.write, self.chunk_size)
        except TRANSFER_ERRORS as e:
            logger.error(f"文件上传失败: {local_path} -> {remote_path}: {e}")
            raise TransferError(f"File upload failed: {e}") from e
        finally:
            sftp.close()

        logger.info(f"文件上传成功: {local_path} -> {remote_path} ({size} 字节)")
        return size

    def download(self, session, remote_path: str, local_path: str) -> int:
        """下载远程文件，返回传输字节数"""
        sftp = session.open_sftp()
        created = False
        try:
            with sftp.open(remote_path, "rb") as remote_file:
                with open(local_path, "wb") as local_file:
                    created = True
                    size = _copy(remote_file.read, local_file.write, self.chunk_size)
        except TRANSFER_ERRORS as e:
            logger.error(f"文件下载失败: {remote_path} -> {local_path}: {e}")
            if created:
                self._remove_partial(local_path)
            raise TransferError(f"File download failed: {e}") from e
        finally:
            sftp.close()

        logger.info(f"文件下载成功: {remote_path} -> {local_path} ({size} 字节)")
        return size

    @staticmethod
    def _remove_partial(local_path: str) -> None:
        try:
            os.remove(local_path)
        except OSError as e:
            logger.warning(f"无法删除不完整的下载文件 {local_path}: {e}")
