import io
import os
from abc import ABC, abstractmethod


class BaseStorageProvider(ABC):
    """
    存储提供者基类。
    定义了如何打开文件、获取大小和名称的标准接口。
    """
    scheme = "file"  # 默认协议

    @abstractmethod
    def open(self, uri: str, buffered: bool = True):
        """返回一个只读的二进制 file-like 对象 (支持 read / seek)。
        buffered=False 时每次 read 都直接访问底层文件，不会读到过期的缓冲数据"""

    @abstractmethod
    def get_size(self, uri: str) -> int:
        """获取文件大小"""

    @abstractmethod
    def get_name(self, uri: str) -> str:
        """从 URI 中提取显示名称"""


class LocalStorageProvider(BaseStorageProvider):
    """本地文件存储提供者 (Default)"""
    scheme = "file"

    def open(self, uri: str, buffered: bool = True):
        return open(self._to_path(uri), 'rb', buffering=-1 if buffered else 0)

    def get_size(self, uri: str) -> int:
        return os.path.getsize(self._to_path(uri))

    def get_name(self, uri: str) -> str:
        return os.path.basename(self._to_path(uri))

    def _to_path(self, uri: str) -> str:
        uri = os.fspath(uri)
        if uri.startswith("file://"):
            return uri[7:]
        return uri


class MemoryStorageProvider(BaseStorageProvider):
    """内存存储提供者 (用于测试和嵌入场景)，每次 open 返回独立游标"""
    scheme = "mem"

    def __init__(self):
        self._blobs = {}

    def put(self, uri: str, data: bytes):
        self._blobs[uri] = bytes(data)

    def remove(self, uri: str):
        self._blobs.pop(uri, None)

    def open(self, uri: str, buffered: bool = True):
        if uri not in self._blobs:
            raise FileNotFoundError(f"no such memory file: {uri}")
        return io.BytesIO(self._blobs[uri])

    def get_size(self, uri: str) -> int:
        if uri not in self._blobs:
            raise FileNotFoundError(f"no such memory file: {uri}")
        return len(self._blobs[uri])

    def get_name(self, uri: str) -> str:
        return uri.split("://", 1)[-1].rsplit("/", 1)[-1]


class StorageRegistry:
    """存储提供者注册表"""
    def __init__(self):
        self._providers = {}
        # 默认注册
        self.register(LocalStorageProvider())
        self.register(MemoryStorageProvider())

    def register(self, provider: BaseStorageProvider):
        self._providers[provider.scheme] = provider

    def get_provider(self, uri) -> BaseStorageProvider:
        uri = os.fspath(uri)
        if "://" in uri:
            scheme = uri.split("://", 1)[0]
            return self._providers.get(scheme, self._providers["file"])
        return self._providers["file"]


default_registry = StorageRegistry()
