import json
import threading
from PyQt6.QtCore import QObject, pyqtSlot, pyqtSignal, QThread

from loglines.store import LineStore
from loglines.scanner import DEFAULT_BUFFER_SIZE
from loglines.errors import LineStoreError
from loglines.storage import default_registry


class IndexingCancelled(Exception):
    pass


class IndexingWorker(QThread):
    """
    索引工作线程。
    在后台扫描文件的行边界，构建 LineStore (行号 -> 文件偏移量)。
    """
    finished = pyqtSignal(object)  # 完成信号，发送 LineStore
    progress = pyqtSignal(float)   # 进度信号 (0-100)
    error = pyqtSignal(str)        # 错误信号

    def __init__(self, path, buffer_size=DEFAULT_BUFFER_SIZE, registry=None):
        super().__init__()
        self.path = str(path)
        self.buffer_size = buffer_size
        self.registry = registry or default_registry
        self._is_running = True

    def stop(self):
        self._is_running = False

    def index(self) -> LineStore:
        """在当前线程中同步构建索引；run() 调用它"""
        size = self.registry.get_provider(self.path).get_size(self.path)

        def on_progress(consumed):
            if not self._is_running:
                raise IndexingCancelled(self.path)
            self.progress.emit(consumed / size * 100 if size else 100.0)

        return LineStore(self.path, buffer_size=self.buffer_size,
                         registry=self.registry, progress=on_progress)

    def run(self):
        try:
            store = self.index()
        except IndexingCancelled:
            return
        except Exception as e:
            self.error.emit(str(e))
            return

        if not self._is_running:
            store.close()
            return
        self.finished.emit(store)


class SessionClosed(Exception):
    """会话已关闭 (close_file 与读取请求并发时)"""


class LogSession:
    """
    日志会话类。
    封装了单个打开的文件的索引和读取锁。
    LineStore 只有一个读取游标，所以所有访问都在 lock 内进行。
    """
    def __init__(self, file_id, path):
        self.id = file_id
        self.path = str(path)
        self.store = None       # 索引完成前为 None
        self.lock = threading.Lock()
        self.workers = {}       # 后台线程句柄 (indexing)

    @property
    def ready(self) -> bool:
        return self.store is not None

    def _require_store(self):
        # 调用方必须持有 lock
        if self.store is None:
            raise SessionClosed(f"session {self.id} is closed")
        return self.store

    def info(self) -> dict:
        with self.lock:
            store = self._require_store()
            return {
                "name": store.name,
                "size": store.total_length,
                "lineCount": len(store),
            }

    def line_count(self) -> int:
        with self.lock:
            return len(self._require_store())

    def byte_offset(self, index: int) -> int:
        with self.lock:
            return self._require_store().byte_offset(index)

    def line(self, index: int) -> dict:
        """读取单行，错误原样抛出 (LineStoreError / SessionClosed)"""
        with self.lock:
            store = self._require_store()
            return {
                "index": index,
                "offset": store.byte_offset(index),
                "content": store.text(index),
            }

    def lines(self, start_line: int, count: int) -> list:
        with self.lock:
            store = self._require_store()
            contents = store.read_lines(start_line, count)
            return [
                {"index": i, "offset": store.byte_offset(i), "content": content}
                for i, content in enumerate(contents, start_line)
            ]

    def close(self, bridge=None):
        """关闭会话。如果提供了 bridge，工作线程将异步退出。"""
        for worker in list(self.workers.values()):
            if bridge:
                bridge._retire_worker(worker)
            elif worker.isRunning():
                worker.stop()
                worker.wait()
        self.workers.clear()

        with self.lock:
            if self.store:
                self.store.close()
                self.store = None


class FileBridge(QObject):
    """
    统一后端：管理多个文件会话。
    Qt 前端通过槽函数调用；HTTP 层 (main.py) 直接使用 get_session()。
    """

    # 信号定义（第一个参数是 file_id，用于前端区分文件）
    fileLoaded = pyqtSignal(str, str)                # (file_id, JSON_payload)
    operationStarted = pyqtSignal(str, str)          # (file_id, opName)
    operationProgress = pyqtSignal(str, str, float)  # (file_id, opName, percent)
    operationError = pyqtSignal(str, str, str)       # (file_id, opName, message)

    def __init__(self, buffer_size=DEFAULT_BUFFER_SIZE, registry=None):
        super().__init__()
        self._sessions = {}  # file_id -> LogSession
        self._zombie_workers = []  # 正在停止的工作线程，防止其过早被回收
        self.buffer_size = buffer_size
        self.registry = registry or default_registry

    def _retire_worker(self, worker):
        """停止一个工作线程，并保留引用直到其真正结束。"""
        if not worker: return
        try:
            # 断开所有信号，防止已弃用的线程再向前端发送消息
            worker.finished.disconnect()
            worker.error.disconnect()
            worker.progress.disconnect()
        except TypeError:
            pass  # 没有连接

        worker.stop()
        if not worker.isRunning():
            return
        self._zombie_workers.append(worker)
        worker.finished.connect(lambda *args: self._cleanup_zombie(worker))
        worker.error.connect(lambda *args: self._cleanup_zombie(worker))

    def _cleanup_zombie(self, worker):
        if worker in self._zombie_workers:
            self._zombie_workers.remove(worker)

    def get_session(self, file_id):
        """返回已完成索引的会话，不存在或仍在索引时返回 None"""
        session = self._sessions.get(file_id)
        if session is None or not session.ready:
            return None
        return session

    @pyqtSlot(str, str, result=bool)
    def open_file(self, file_id: str, file_path: str, wait: bool = False) -> bool:
        """
        打开并索引文件 (Open and Index)。
        wait=False 时在 IndexingWorker 线程中扫描，完成后发出 fileLoaded；
        wait=True 时在调用线程中同步扫描。
        """
        # 如果 session 已存在，先关闭（防止句柄泄漏）
        if file_id in self._sessions:
            self._sessions.pop(file_id).close(self)

        try:
            self.registry.get_provider(file_path).get_size(file_path)
        except OSError as e:
            print(f"[Index] Cannot open {file_path}: {e}")
            return False

        session = LogSession(file_id, file_path)
        self._sessions[file_id] = session
        self.operationStarted.emit(file_id, "indexing")

        if wait:
            try:
                store = LineStore(file_path, buffer_size=self.buffer_size, registry=self.registry)
            except (OSError, LineStoreError) as e:
                self._on_indexing_error(session, str(e))
                return False
            self._on_indexing_finished(session, store)
            return True

        worker = IndexingWorker(file_path, self.buffer_size, self.registry)
        session.workers['indexing'] = worker
        worker.finished.connect(lambda store: self._on_indexing_finished(session, store))
        worker.progress.connect(lambda p: self.operationProgress.emit(file_id, "indexing", p))
        worker.error.connect(lambda e: self._on_indexing_error(session, e))
        worker.start()
        return True

    def _on_indexing_finished(self, session, store):
        if self._sessions.get(session.id) is not session:
            # 会话在索引期间被关闭或替换
            store.close()
            return
        with session.lock:
            session.store = store

        self.fileLoaded.emit(session.id, json.dumps(session.info()))
        print(f"[Index] Session {session.id}: {len(store)} lines indexed")

    def _on_indexing_error(self, session, message):
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
            session.close(self)
        print(f"[Index] Error indexing {session.path}: {message}")
        self.operationError.emit(session.id, "indexing", message)

    @pyqtSlot(str, result=int)
    def line_count(self, file_id: str) -> int:
        session = self.get_session(file_id)
        if session is None: return -1
        try:
            return session.line_count()
        except SessionClosed:
            return -1

    @pyqtSlot(str, int, result=int)
    def byte_offset(self, file_id: str, index: int) -> int:
        session = self.get_session(file_id)
        if session is None: return -1
        try:
            return session.byte_offset(index)
        except (LineStoreError, SessionClosed) as e:
            print(f"[Session] {file_id}: {e}")
            return -1

    @pyqtSlot(str, int, int, result=str)
    def read_lines(self, file_id: str, start_line: int, count: int) -> str:
        """
        读取视口内的行 (Read Lines)。
        前端滚动时不断调用此方法，只有首次访问的行会产生磁盘读取。
        """
        session = self.get_session(file_id)
        if session is None: return "[]"
        try:
            return json.dumps(session.lines(start_line, count))
        except (LineStoreError, SessionClosed) as e:
            print(f"[Session] {file_id}: {e}")
            return "[]"

    @pyqtSlot(str)
    def close_file(self, file_id: str):
        if file_id in self._sessions:
            self._sessions.pop(file_id).close(self)

    def close_all(self):
        for file_id in list(self._sessions):
            self.close_file(file_id)
