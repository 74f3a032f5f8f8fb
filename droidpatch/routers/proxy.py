# droidpatch/routers/proxy.py
# Todo lo que no es /health ni búsqueda: mock (standalone) o reenvío al upstream.
from __future__ import annotations

import logging
import secrets
import time
from typing import Optional

import requests
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

log = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

LLM_PREFIXES = ("/api/llm/a/", "/api/llm/o/")
HOP_BY_HOP = {
    "host", "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailer", "transfer-encoding", "upgrade", "content-length",
}
# requests ya descomprime el cuerpo
DROP_RESPONSE = HOP_BY_HOP | {"content-encoding"}
FORWARD_TIMEOUT = (10, 600)


def is_llm_path(path: str) -> bool:
    return path.startswith(LLM_PREFIXES)


def standalone_response(path: str) -> Optional[JSONResponse]:
    """Respuesta local para APIs no-LLM; None si hay que reenviar."""
    if is_llm_path(path):
        return None
    if path == "/api/sessions/create":
        sid = f"local-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        return JSONResponse({"id": sid})
    if path == "/api/cli/whoami":
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return JSONResponse({})


def _forward(method: str, url: str, headers: dict, body: bytes) -> requests.Response:
    return requests.request(method, url, headers=headers, data=body or None,
                            stream=True, allow_redirects=False, timeout=FORWARD_TIMEOUT)


@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"])
async def passthrough(path: str, request: Request):
    st = request.app.state
    pathname = "/" + path

    if st.standalone:
        mocked = standalone_response(pathname)
        if mocked is not None:
            log.debug("mock %s %s", request.method, pathname)
            return mocked

    url = st.upstream.rstrip("/") + pathname
    if request.url.query:
        url += "?" + request.url.query
    headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP}
    body = await request.body()

    log.debug("proxy %s %s", request.method, url)
    try:
        upstream = await run_in_threadpool(_forward, request.method, url, headers, body)
    except requests.RequestException as e:
        return JSONResponse(status_code=502, content={"error": f"Proxy failed: {e}"})

    out_headers = {k: v for k, v in upstream.headers.items() if k.lower() not in DROP_RESPONSE}
    if request.method == "HEAD":
        upstream.close()
        return Response(status_code=upstream.status_code, headers=out_headers)

    def body_iter():
        try:
            yield from upstream.iter_content(chunk_size=None)
        finally:
            upstream.close()

    return StreamingResponse(body_iter(), status_code=upstream.status_code, headers=out_headers)
