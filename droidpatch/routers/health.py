# droidpatch/routers/health.py
from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    st = request.app.state
    idle = int(time.monotonic() - st.last_activity)
    will_shutdown = max(0, st.idle_timeout - idle) if st.idle_timeout > 0 else None
    return {
        "status": "ok",
        "mode": "standalone" if st.standalone else "websearch",
        "port": st.port,
        "upstream": st.upstream,
        "idleTimeout": st.idle_timeout,
        "idleSeconds": idle,
        "willShutdownIn": will_shutdown,
    }
