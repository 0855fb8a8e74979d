class LineStoreError(Exception):
    """行存储相关错误的基类"""


class LineIndexOutOfBounds(LineStoreError, IndexError):
    """请求的行号超出文件总行数"""

    def __init__(self, index: int, line_count: int):
        self.index = index
        self.line_count = line_count
        super().__init__(f"index {index} in file of only {line_count} lines")


class LineReadError(LineStoreError, OSError):
    """
    构建索引之后的懒读取失败 (seek/read 出错，或文件被截断)。
    不会被缓存，下一次调用会重新读取。
    """

    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"line {index}: {message}")


class LineDecodeError(LineStoreError, ValueError):
    """行内容不是合法的 UTF-8"""

    def __init__(self, index: int, offset: int, reason: str):
        self.index = index
        self.offset = offset
        super().__init__(f"line {index} at byte {offset} is not valid UTF-8: {reason}")
