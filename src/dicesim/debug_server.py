"""
Diagnostic HTTP server with profiling endpoints.

Endpoints under /debug/pprof/:
- ``/``        index of endpoints and live threads
- ``cmdline``  process command line, NUL-separated
- ``profile``  sampling CPU profile for ``?seconds=N`` (collapsed stacks)
- ``symbol``   resolve ``?name=module:qualname`` to its source location
- ``trace``    thread stack timeline for ``?seconds=N`` (JSON lines)

The routes are a FastAPI app; ``DebugServer`` runs it with uvicorn inside a
lifecycle task and stops it from the teardown thread.
"""

import inspect
import json
import logging
import math
import socket
import sys
import threading
import time
from collections import Counter
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, Response

from .lifecycle import CancellationToken

PREFIX = "/debug/pprof/"
DEFAULT_PROFILE_SECONDS = 30.0
DEFAULT_TRACE_SECONDS = 1.0
MAX_SAMPLE_SECONDS = 300.0
PROFILE_SAMPLE_INTERVAL = 0.01
TRACE_SAMPLE_INTERVAL = 0.05
CLOSE_TIMEOUT = 5.0

ENDPOINTS = {
    "cmdline": "The command line invocation of the current program",
    "profile": "CPU profile. Add ?seconds=N to set the sampling duration",
    "symbol": "Source location of a function. Add ?name=module:qualname",
    "trace": "Timeline of thread stacks. Add ?seconds=N to set the duration",
}


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (host may be empty) into a bind address."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"invalid debug address {address!r}: expected host:port")
    try:
        return host.strip("[]"), int(port)
    except ValueError:
        raise ValueError(f"invalid debug address {address!r}: bad port") from None


def _frame_stack(frame: Any) -> list[str]:
    """Function names from outermost to innermost for one thread."""
    stack = []
    while frame is not None:
        code = frame.f_code
        stack.append(f"{frame.f_globals.get('__name__', '?')}.{code.co_name}")
        frame = frame.f_back
    stack.reverse()
    return stack


def sample_stacks(seconds: float, interval: float, skip: int | None = None):
    """Yield (timestamp, {thread name: stack}) samples for ``seconds``."""
    names = {t.ident: t.name for t in threading.enumerate()}
    deadline = time.monotonic() + seconds
    while True:
        frames = sys._current_frames()
        sample = {
            names.get(ident, str(ident)): _frame_stack(frame)
            for ident, frame in frames.items()
            if ident != skip
        }
        yield time.time(), sample
        if time.monotonic() >= deadline:
            return
        time.sleep(interval)
        names.update({t.ident: t.name for t in threading.enumerate()})


def cpu_profile(seconds: float, interval: float = PROFILE_SAMPLE_INTERVAL) -> str:
    """Collapsed-stack profile: one ``frame;frame;... count`` line per distinct stack."""
    counts: Counter[str] = Counter()
    me = threading.get_ident()
    for _, sample in sample_stacks(seconds, interval, skip=me):
        for thread_name, stack in sample.items():
            counts[";".join([thread_name, *stack])] += 1
    return "".join(f"{stack} {n}\n" for stack, n in counts.most_common())




def trace_timeline(seconds: float, interval: float = TRACE_SAMPLE_INTERVAL) -> str:
    """One JSON object per sample: ``{"ts": ..., "threads": {name: stack}}``."""
    me = threading.get_ident()
    return "".join(
        json.dumps({"ts": ts, "threads": sample}) + "\n"
        for ts, sample in sample_stacks(seconds, interval, skip=me)
    )


def resolve_symbol(name: str) -> str:
    """Return ``name file:line`` for ``module:qualname`` (or a bare module).

    Only modules that are already imported are searched; nothing is imported
    on behalf of a request.
    """
    module_name, _, qualname = name.partition(":")
    try:
        obj: Any = sys.modules[module_name]
        for part in filter(None, qualname.split(".")):
            obj = getattr(obj, part)
    except KeyError:
        raise ValueError(f"module {module_name!r} is not loaded") from None
    except AttributeError as e:
        raise ValueError(str(e)) from None

    obj = inspect.unwrap(obj)
    try:
        path = inspect.getsourcefile(obj) or "?"
        _, line = inspect.getsourcelines(obj)
    except (OSError, TypeError):
        path, line = "?", 0
    return f"{name} {path}:{line}"


def parse_seconds(raw: str | None, default: float) -> float:
    """Sampling duration from a query value, capped at MAX_SAMPLE_SECONDS."""
    if raw is None:
        return default
    value = float(raw)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"seconds must be a non-negative number, got {raw!r}")
    return min(value, MAX_SAMPLE_SECONDS)


def _index() -> str:
    lines = [PREFIX, ""]
    lines.extend(f"{name}: {desc}" for name, desc in ENDPOINTS.items())
    lines.append("")
    lines.append(f"threads: {threading.active_count()}")
    lines.extend(f"  {t.name}" for t in threading.enumerate())
    return "\n".join(lines) + "\n"


def create_app() -> FastAPI:
    """Build the FastAPI app serving the profiling endpoints."""
    app = FastAPI(title="dicesim debug", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError) -> PlainTextResponse:
        return PlainTextResponse(f"{exc}\n", status_code=400)

    @app.get(PREFIX, response_class=PlainTextResponse)
    def index() -> str:
        return _index()

    @app.get(PREFIX + "cmdline", response_class=PlainTextResponse)
    def cmdline() -> str:
        return "\x00".join(sys.argv)

    @app.get(PREFIX + "profile", response_class=PlainTextResponse)
    def profile(seconds: str | None = None) -> str:
        return cpu_profile(parse_seconds(seconds, DEFAULT_PROFILE_SECONDS))

    @app.get(PREFIX + "symbol", response_class=PlainTextResponse)
    def symbol(name: list[str] = Query(default=[])) -> str:
        if not name:
            return "num_symbols: 0\n"
        return "".join(resolve_symbol(n) + "\n" for n in name)

    @app.get(PREFIX + "trace")
    def timeline(seconds: str | None = None) -> Response:
        body = trace_timeline(parse_seconds(seconds, DEFAULT_TRACE_SECONDS))
        return Response(body, media_type="application/x-ndjson")

    @app.get(PREFIX + "{name}")
    def unknown(name: str) -> PlainTextResponse:
        return PlainTextResponse(f"Unknown profile: {name}\n", status_code=404)

    return app


class DebugServer:
    """Diagnostic HTTP server; bound lazily by ``serve`` and stopped by ``close``."""

    def __init__(self, address: str, logger: logging.Logger | None = None):
        self.address = address
        self.logger = logger or logging.getLogger(__name__)
        self.app = create_app()
        self._server: uvicorn.Server | None = None
        self._socket: socket.socket | None = None
        self._bound_address: tuple[str, int] | None = None
        self._closed = False
        self._lock = threading.Lock()
        self._bound = threading.Event()
        self._stopped = threading.Event()

    @property
    def server_address(self) -> tuple[str, int] | None:
        """Actual bound (host, port), or None before binding."""
        return self._bound_address

    def wait_bound(self, timeout: float | None = None) -> bool:
        """Block until ``serve`` has bound (or given up); True if bound."""
        self._bound.wait(timeout)
        return self._server is not None

    def _bind(self) -> None:
        host, port = parse_address(self.address)
        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=1,
        )
        # uvicorn logs the OSError and exits when the address is taken
        self._socket = config.bind_socket()
        self._bound_address = self._socket.getsockname()[:2]
        self._server = uvicorn.Server(config)

    def serve(self, token: CancellationToken | None = None) -> None:
        """Run uvicorn until closed. Errors are logged, never raised."""
        try:
            with self._lock:
                if self._closed:
                    return
                self._bind()
        except ValueError as e:
            self.logger.error("Serving debug endpoints", extra={"error": str(e)})
            return
        except SystemExit:
            self.logger.error(
                "Serving debug endpoints", extra={"error": f"cannot bind {self.address}"}
            )
            return
        finally:
            self._bound.set()

        self.logger.info("Debug server listening", extra={"address": self.address})
        try:
            self._server.run(sockets=[self._socket])
        except Exception as e:
            self.logger.error("Serving debug endpoints", extra={"error": str(e)})
        finally:
            self._socket.close()
            self._stopped.set()

    def close(self) -> None:
        """Stop uvicorn and wait for the socket to be released. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            server = self._server

        if server is not None:
            server.should_exit = True
            self._stopped.wait(CLOSE_TIMEOUT)
