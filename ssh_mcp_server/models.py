from enum import Enum
from pydantic import BaseModel, Field


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


class ConnectionInfo(BaseModel):
    name: str = Field(..., description="Connection name")
    host: str = Field(..., description="Remote server hostname or IP")
    port: int = Field(default=22, description="SSH port")
    username: str = Field(..., description="SSH username")
    connected: bool = Field(default=False, description="Whether the session is ready")


class TransferOperation(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferResult(BaseModel):
    connection: str = Field(..., description="Connection name")
    operation: TransferOperation = Field(..., description="File operation type")
    local_path: str = Field(..., description="Absolute local file path")
    remote_path: str = Field(..., description="Remote file path")
    bytes_transferred: int = Field(default=0, description="Number of bytes transferred")
    transfer_time: float = Field(..., description="Transfer time in seconds")

    class Config:
        use_enum_values = True

    @property
    def message(self) -> str:
        if self.operation == TransferOperation.UPLOAD.value:
            return (
                f"File uploaded successfully: {self.local_path} -> {self.remote_path} "
                f"({self.bytes_transferred} bytes)"
            )
        return (
            f"File downloaded successfully: {self.remote_path} -> {self.local_path} "
            f"({self.bytes_transferred} bytes)"
        )
