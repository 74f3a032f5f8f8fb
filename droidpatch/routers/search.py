# droidpatch/routers/search.py
from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from droidpatch.services import search as search_service

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools", tags=["search"])


class SearchIn(BaseModel):
    query: str
    numResults: int = Field(default=10, ge=1, le=50)


@router.post("/exa/search")
def exa_search(data: SearchIn):
    try:
        results, source = search_service.search(data.query, data.numResults)
    except Exception as e:  # el cliente espera siempre {"results": [...]}
        log.exception("search failed for %r", data.query)
        return JSONResponse(status_code=500, content={"error": str(e), "results": []})
    log.debug("search %r: %d results from %s", data.query, len(results), source)
    return {"results": results}
