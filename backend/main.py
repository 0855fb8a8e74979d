import os
import argparse
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from contextlib import asynccontextmanager

from bridge import FileBridge, SessionClosed
from loglines.errors import LineIndexOutOfBounds, LineReadError, LineDecodeError

# Global bridge instance
bridge = FileBridge()


@asynccontextmanager
async def lifespan(app: FastAPI):
    print("[Server] Ready.")
    yield
    bridge.close_all()
    print("[Server] Shutting down.")


app = FastAPI(lifespan=lifespan)

# Enable CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class OpenFileRequest(BaseModel):
    file_id: str
    file_path: str


class CloseFileRequest(BaseModel):
    file_id: str


# 库异常 -> HTTP 状态码
@app.exception_handler(LineIndexOutOfBounds)
async def out_of_bounds_handler(request: Request, exc: LineIndexOutOfBounds):
    return JSONResponse(status_code=404, content={"detail": str(exc), "lineCount": exc.line_count})


@app.exception_handler(LineDecodeError)
async def decode_error_handler(request: Request, exc: LineDecodeError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(SessionClosed)
async def session_closed_handler(request: Request, exc: SessionClosed):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(LineReadError)
async def read_error_handler(request: Request, exc: LineReadError):
    print(f"[Session] Read failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _session(file_id: str):
    session = bridge.get_session(file_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"no open file with id {file_id!r}")
    return session


@app.post("/api/open_file")
def open_file(data: OpenFileRequest):
    if not bridge.open_file(data.file_id, data.file_path, wait=True):
        raise HTTPException(status_code=404, detail=f"cannot open {data.file_path}")
    return _session(data.file_id).info()


@app.get("/api/line_count")
def line_count(file_id: str):
    return _session(file_id).line_count()


@app.get("/api/byte_offset")
def byte_offset(file_id: str, index: int):
    return _session(file_id).byte_offset(index)


@app.get("/api/line")
def read_line(file_id: str, index: int):
    return _session(file_id).line(index)


@app.get("/api/read_lines")
def read_lines(file_id: str, start_line: int, count: int):
    return _session(file_id).lines(start_line, count)


@app.post("/api/close_file")
def close_file(data: CloseFileRequest):
    bridge.close_file(data.file_id)
    return True


def start_app():
    parser = argparse.ArgumentParser(description='loglines - random access line server for large log files')
    parser.add_argument('paths', nargs='*', help='Files to index at startup')
    parser.add_argument('--host', default='127.0.0.1', help='Bind address')
    parser.add_argument('--port', type=int, default=12345, help='Backend server port')
    parser.add_argument('--buffer-size', type=int, default=bridge.buffer_size,
                        help='Scan buffer size in bytes')
    args = parser.parse_args()

    if args.buffer_size < 1:
        parser.error("--buffer-size must be positive")
    bridge.buffer_size = args.buffer_size

    # Handle CLI paths
    for n, path in enumerate(args.paths):
        abs_path = os.path.abspath(path)
        file_id = f"cli-{n}"
        if bridge.open_file(file_id, abs_path, wait=True):
            print(f"[Server] Opened {abs_path} as {file_id}")

    print(f"[Server] Serving on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="error")


if __name__ == "__main__":
    start_app()
