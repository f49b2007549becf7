import pytest

from ssh_mcp_server.models import (
    ConnectionInfo,
    ConnectionStatus,
    TransferOperation,
    TransferResult,
)


class TestConnectionModels:
    """Test connection-related data models"""

    def test_connection_info_creation(self):
        """Test ConnectionInfo model creation"""
        info = ConnectionInfo(name="dev", host="example.com", username="testuser")

        assert info.name == "dev"
        assert info.host == "example.com"
        assert info.port == 22
        assert info.username == "testuser"
        assert info.connected is False

    def test_connection_info_validation(self):
        """Test ConnectionInfo model validation"""
        with pytest.raises(ValueError):
            ConnectionInfo(name="dev", host="example.com")

    def test_connection_status_enum(self):
        """Test ConnectionStatus enum values"""
        assert ConnectionStatus.DISCONNECTED == "disconnected"
        assert ConnectionStatus.CONNECTING == "connecting"
        assert ConnectionStatus.READY == "ready"


class TestTransferModels:
    """Test file transfer result models"""

    def test_upload_result(self):
        result = TransferResult(
            connection="dev",
            operation=TransferOperation.UPLOAD,
            local_path="/work/a.txt",
            remote_path="/srv/a.txt",
            bytes_transferred=42,
            transfer_time=0.1,
        )

        assert result.operation == "upload"
        assert result.message == "File uploaded successfully: /work/a.txt -> /srv/a.txt (42 bytes)"

    def test_download_result(self):
        result = TransferResult(
            connection="dev",
            operation=TransferOperation.DOWNLOAD,
            local_path="/work/a.txt",
            remote_path="/srv/a.txt",
            transfer_time=0.1,
        )

        assert result.bytes_transferred == 0
        assert result.message.startswith("File downloaded successfully: /srv/a.txt -> /work/a.txt")

    def test_file_operation_enum(self):
        """Test TransferOperation enum values"""
        assert TransferOperation.UPLOAD == "upload"
        assert TransferOperation.DOWNLOAD == "download"
