import os
from typing import List, Tuple

from loglines.errors import LineIndexOutOfBounds, LineReadError, LineDecodeError
from loglines.scanner import scan, DEFAULT_BUFFER_SIZE
from loglines.storage import default_registry


class LineStore:
    """
    行数组 (Line Array)。
    把一个大文件 (例如日志) 当作按需读取的行数组来访问。

    构建时顺序扫描一次文件，只记录每行的起始偏移量；
    之后 text(i) 直接 seek 到该行的偏移量，读取恰好属于这一行的字节，
    按 UTF-8 严格解码后缓存，重复访问不再产生 I/O。

    返回的文本包含该行自身的换行字节 (例如 "1\\n")。
    实例不是线程安全的：扫描之后只有一个读取游标，多线程访问需要调用方加锁。
    """

    def __init__(self, path, buffer_size: int = DEFAULT_BUFFER_SIZE, registry=None, progress=None):
        self.uri = os.fspath(path)
        self.provider = (registry or default_registry).get_provider(self.uri)

        # 扫描使用独立句柄，扫描结束即关闭
        with self.provider.open(self.uri) as f:
            result = scan(f, buffer_size, progress)

        self._offsets = result.offsets
        self._total_length = result.total_length
        self._cache = {}  # 行号 -> 解码后的文本

        # 重新打开一个无缓冲句柄专门用于随机读取，扫描游标不会影响之后的 seek
        self._file = self.provider.open(self.uri, buffered=False)

    @property
    def total_length(self) -> int:
        """扫描时统计到的文件总字节数"""
        return self._total_length

    @property
    def name(self) -> str:
        return self.provider.get_name(self.uri)

    @property
    def closed(self) -> bool:
        return self._file is None

    def length(self) -> int:
        """逻辑行数"""
        return len(self._offsets)

    def byte_offset(self, i: int) -> int:
        """第 i 行第一个字节在文件中的偏移量"""
        self._check_index(i)
        return self._offsets[i]

    def span(self, i: int) -> Tuple[int, int]:
        """第 i 行的字节范围 [start, end)，包含换行字节"""
        self._check_index(i)
        start = self._offsets[i]
        if i + 1 < len(self._offsets):
            end = self._offsets[i + 1]
        else:
            end = self._total_length
        return start, end

    def is_cached(self, i: int) -> bool:
        self._check_index(i)
        return i in self._cache

    def text(self, i: int) -> str:
        """
        读取第 i 行。
        首次访问时 seek + read + 解码，结果缓存；之后直接返回缓存。
        读取失败 (LineReadError) 或解码失败 (LineDecodeError) 都不会写入缓存。
        """
        self._check_index(i)
        if i in self._cache:
            return self._cache[i]

        start, end = self.span(i)
        size = end - start
        if self._file is None:
            raise LineReadError(i, "store is closed")

        try:
            self._file.seek(start)
            data = self._read_exact(size)
        except OSError as e:
            raise LineReadError(i, str(e)) from e

        if len(data) != size:
            # 文件在建立索引之后被截断
            raise LineReadError(i, f"expected {size} bytes at offset {start}, got {len(data)}")

        try:
            content = data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise LineDecodeError(i, start, e.reason) from e

        self._cache[i] = content
        return content

    def read_lines(self, start_line: int, count: int) -> List[str]:
        """读取从 start_line 开始的最多 count 行，超出文件末尾的部分被截断"""
        if start_line < 0:
            raise LineIndexOutOfBounds(start_line, len(self._offsets))
        end = min(start_line + max(count, 0), len(self._offsets))
        return [self.text(i) for i in range(start_line, end)]

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None

    def _read_exact(self, size: int) -> bytes:
        # 无缓冲读取可能返回不足 size 的字节，读到 EOF 为止
        parts = []
        remaining = size
        while remaining > 0:
            chunk = self._file.read(remaining)
            if not chunk:
                break
            parts.append(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    def _check_index(self, i: int):
        if i < 0 or i >= len(self._offsets):
            raise LineIndexOutOfBounds(i, len(self._offsets))

    def __len__(self):
        return len(self._offsets)

    def __getitem__(self, key):
        if isinstance(key, slice):
            return [self.text(i) for i in range(*key.indices(len(self._offsets)))]
        if key < 0:
            if key + len(self._offsets) < 0:
                raise LineIndexOutOfBounds(key, len(self._offsets))
            key += len(self._offsets)
        return self.text(key)

    def __iter__(self):
        for i in range(len(self._offsets)):
            yield self.text(i)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"LineStore({self.uri!r}, lines={len(self._offsets)}, size={self._total_length})"
