import re
import array
from enum import Enum
from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_BUFFER_SIZE = 64 * 1024  # 每次填充缓冲区读取的字节数

LF = 0x0A
CR = 0x0D

# 只有换行字节需要进入状态机，其余内容整段跳过
_TERMINATOR = re.compile(b"[\r\n]")


class LineState(Enum):
    """扫描状态：上一个换行字节是否还在等待配对"""
    CLEAN = "clean"
    PENDING_LF = "pending_lf"
    PENDING_CR = "pending_cr"


@dataclass
class ScanResult:
    """扫描结果：每行起始偏移量 (array('Q')) 与文件总字节数"""
    offsets: array.array
    total_length: int


class BoundaryScanner:
    """
    行边界扫描器。
    逐块喂入原始字节，只记录每一行的起始偏移量，不保存行内容。
    支持四种换行约定：LF, CR, CRLF, LFCR，每种都只算一个边界。
    状态保存在实例上，所以跨越两次填充的换行符 (例如 '\\r' | '\\n') 也能正确识别。
    """

    def __init__(self):
        self.offsets = array.array('Q')
        self.state = LineState.CLEAN
        self.line_start = 0   # 当前行的起始偏移量
        self.pending_at = -1  # 待定换行字节的绝对位置
        self.consumed = 0     # 已扫描的字节总数
        self._finished = False

    def feed(self, chunk):
        """扫描一块字节 (bytes / bytearray)"""
        if self._finished:
            raise RuntimeError("scanner already finished")
        base = self.consumed
        for m in _TERMINATOR.finditer(chunk):
            pos = base + m.start()
            if self.state is not LineState.CLEAN and pos != self.pending_at + 1:
                # 待定换行符后面跟着普通内容字节
                self._confirm_single()
            self._on_terminator(chunk[m.start()], pos)
        self.consumed = base + len(chunk)
        if self.state is not LineState.CLEAN and self.consumed > self.pending_at + 1:
            self._confirm_single()

    def finish(self) -> ScanResult:
        """结束扫描。若最后一行没有换行符 (或换行符只到一半)，仍计为一行"""
        if not self._finished:
            if self.line_start < self.consumed:
                self.offsets.append(self.line_start)
            self.state = LineState.CLEAN
            self._finished = True
        return ScanResult(self.offsets, self.consumed)

    def _on_terminator(self, byte, pos):
        pending = LineState.PENDING_LF if byte == LF else LineState.PENDING_CR
        if self.state is LineState.CLEAN:
            self.state = pending
            self.pending_at = pos
        elif self.state is pending:
            # 连续两个相同的换行字节：前一个是单字节换行，新行从当前字节开始
            self._close_line(pos)
            self.pending_at = pos
        else:
            # CRLF 或 LFCR：两个字节组成一个边界
            self._close_line(pos + 1)
            self.state = LineState.CLEAN

    def _confirm_single(self):
        self._close_line(self.pending_at + 1)
        self.state = LineState.CLEAN

    def _close_line(self, next_start):
        self.offsets.append(self.line_start)
        self.line_start = next_start


def scan(fileobj, buffer_size: int = DEFAULT_BUFFER_SIZE,
         progress: Optional[Callable[[int], None]] = None) -> ScanResult:
    """
    通过固定大小的缓冲区顺序扫描一个二进制文件对象。
    progress 每次填充后收到已扫描的字节数。
    读取过程中的 OSError 直接向上抛出。
    """
    if buffer_size < 1:
        raise ValueError(f"buffer_size must be positive, got {buffer_size}")

    scanner = BoundaryScanner()
    while True:
        chunk = fileobj.read(buffer_size)
        if not chunk:
            break
        scanner.feed(chunk)
        if progress:
            progress(scanner.consumed)
    return scanner.finish()
