# droidpatch/main.py
# Proxy local: búsqueda web + (opcional) mocks standalone + reenvío al upstream.
from __future__ import annotations

import argparse
import contextlib
import logging
import os
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from droidpatch.routers.health import router as health_router
from droidpatch.routers.proxy import router as proxy_router
from droidpatch.routers.search import router as search_router
from droidpatch.services import storage

log = logging.getLogger(__name__)


def create_app(upstream: Optional[str] = None, standalone: bool = False,
               idle_timeout: Optional[int] = None, port: Optional[int] = None) -> FastAPI:
    app = FastAPI(title="droid-patch proxy")
    app.state.upstream = (upstream or storage.UPSTREAM_API).rstrip("/")
    app.state.standalone = standalone
    app.state.idle_timeout = storage.PROXY_IDLE_TIMEOUT if idle_timeout is None else idle_timeout
    app.state.port = port or storage.PROXY_PORT
    app.state.last_activity = time.monotonic()

    @app.middleware("http")
    async def touch_activity(request: Request, call_next):
        # /health no cuenta como actividad (lo usa el launcher)
        if request.url.path != "/health":
            app.state.last_activity = time.monotonic()
        return await call_next(request)

    app.include_router(health_router)
    app.include_router(search_router)
    # catch-all: siempre al final
    app.include_router(proxy_router)
    return app


app = create_app(standalone=os.getenv("STANDALONE_MODE") == "1")


def idle_expired(app: FastAPI, now: Optional[float] = None) -> bool:
    t = app.state.idle_timeout
    if t <= 0:
        return False
    return ((now if now is not None else time.monotonic()) - app.state.last_activity) >= t


def _watchdog(server: uvicorn.Server, app: FastAPI, every: float = 5.0) -> None:
    while not server.should_exit:
        time.sleep(every)
        if idle_expired(app):
            log.info("idle for %ss, shutting down", app.state.idle_timeout)
            server.should_exit = True


def serve(port: int, upstream: Optional[str] = None, standalone: bool = False) -> None:
    application = create_app(upstream=upstream, standalone=standalone, port=port)
    config = uvicorn.Config(application, host=storage.PROXY_HOST, port=port,
                            log_level="debug" if storage.SEARCH_DEBUG else "warning")
    server = uvicorn.Server(config)
    threading.Thread(target=_watchdog, args=(server, application), daemon=True).start()

    storage.PROXY_PID_FILE.write_text(str(os.getpid()))
    print(f"PORT={port}", flush=True)
    try:
        server.run()
    finally:
        with contextlib.suppress(OSError):
            if storage.PROXY_PID_FILE.read_text().strip() == str(os.getpid()):
                storage.PROXY_PID_FILE.unlink()


def main(argv=None) -> None:
    ap = argparse.ArgumentParser(prog="droidpatch.main", description="droid-patch local proxy")
    ap.add_argument("--port", type=int, default=storage.PROXY_PORT)
    ap.add_argument("--upstream", default=storage.UPSTREAM_API)
    ap.add_argument("--standalone", action="store_true",
                    default=os.getenv("STANDALONE_MODE") == "1")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if storage.SEARCH_DEBUG else logging.INFO,
                        format="%(asctime)s [%(name)s] %(message)s")
    serve(args.port, args.upstream, args.standalone)


if __name__ == "__main__":
    main()
