# droidpatch/services/search.py
# Proveedores de búsqueda web, en orden de prioridad. Cada uno devuelve None
# si no está configurado o falla; se prueba el siguiente.
from __future__ import annotations

import json
import logging
import os
from typing import Callable, Dict, List, Optional, Tuple

import requests

log = logging.getLogger(__name__)

TIMEOUT = 15
Result = Dict[str, str]


def _item(title, url, content) -> Result:
    return {"title": title or "", "url": url or "", "content": content or ""}


def search_smithery_exa(query: str, num: int) -> Optional[List[Result]]:
    key, profile = os.getenv("SMITHERY_API_KEY"), os.getenv("SMITHERY_PROFILE")
    if not key or not profile:
        return None
    body = {"jsonrpc": "2.0", "id": 1, "method": "tools/call",
            "params": {"name": "web_search_exa", "arguments": {"query": query, "numResults": num}}}
    r = requests.post("https://server.smithery.ai/exa/mcp",
                      params={"api_key": key, "profile": profile}, json=body, timeout=30)
    r.raise_for_status()
    content = (r.json().get("result") or {}).get("content") or []
    text = next((c.get("text") for c in content if c.get("type") == "text"), None)
    if not text:
        return None
    items = json.loads(text)
    if not isinstance(items, list):
        return None
    return [_item(i.get("title"), i.get("url"),
                  i.get("text") or i.get("snippet") or " ".join(i.get("highlights") or []))
            for i in items[:num]]


def search_google_pse(query: str, num: int) -> Optional[List[Result]]:
    key, cx = os.getenv("GOOGLE_PSE_API_KEY"), os.getenv("GOOGLE_PSE_CX")
    if not key or not cx:
        return None
    r = requests.get("https://www.googleapis.com/customsearch/v1",
                     params={"key": key, "cx": cx, "q": query, "num": min(num, 10)}, timeout=TIMEOUT)
    data = r.json()
    if data.get("error"):
        return None
    return [_item(i.get("title"), i.get("link"), i.get("snippet")) for i in data.get("items") or []]


def search_tavily(query: str, num: int) -> Optional[List[Result]]:
    key = os.getenv("TAVILY_API_KEY")
    if not key:
        return None
    r = requests.post("https://api.tavily.com/search", json={
        "api_key": key, "query": query, "max_results": num, "search_depth": "basic",
        "include_answer": False, "include_images": False, "include_raw_content": False,
    }, timeout=TIMEOUT)
    r.raise_for_status()
    return [_item(i.get("title"), i.get("url"), i.get("content") or i.get("snippet"))
            for i in (r.json().get("results") or [])[:num]]


def search_serper(query: str, num: int) -> Optional[List[Result]]:
    key = os.getenv("SERPER_API_KEY")
    if not key:
        return None
    r = requests.post("https://google.serper.dev/search", json={"q": query, "num": num},
                      headers={"X-API-KEY": key}, timeout=TIMEOUT)
    r.raise_for_status()
    return [_item(i.get("title"), i.get("link"), i.get("snippet"))
            for i in (r.json().get("organic") or [])[:num]]


def search_brave(query: str, num: int) -> Optional[List[Result]]:
    key = os.getenv("BRAVE_API_KEY")
    if not key:
        return None
    r = requests.get("https://api.search.brave.com/res/v1/web/search",
                     params={"q": query, "count": num},
                     headers={"Accept": "application/json", "X-Subscription-Token": key}, timeout=TIMEOUT)
    r.raise_for_status()
    web = r.json().get("web") or {}
    return [_item(i.get("title"), i.get("url"), i.get("description"))
            for i in (web.get("results") or [])[:num]]


def search_searxng(query: str, num: int) -> Optional[List[Result]]:
    base = os.getenv("SEARXNG_URL")
    if not base:
        return None
    r = requests.get(base.rstrip("/") + "/search",
                     params={"q": query, "format": "json", "engines": "google,bing,duckduckgo"},
                     headers={"Accept": "application/json"}, timeout=TIMEOUT)
    r.raise_for_status()
    return [_item(i.get("title"), i.get("url"), i.get("content"))
            for i in (r.json().get("results") or [])[:num]]


def search_duckduckgo(query: str, num: int) -> Optional[List[Result]]:
    r = requests.get("https://api.duckduckgo.com/",
                     params={"q": query, "format": "json", "no_html": 1, "skip_disambig": 1},
                     headers={"User-Agent": "Mozilla/5.0"}, timeout=TIMEOUT)
    r.raise_for_status()
    data = r.json()
    out: List[Result] = []
    if data.get("Abstract") and data.get("AbstractURL"):
        out.append(_item(data.get("Heading") or query, data["AbstractURL"], data["Abstract"]))
    for topic in data.get("RelatedTopics") or []:
        # los temas pueden venir agrupados en "Topics"
        for t in [topic] + list(topic.get("Topics") or []):
            if len(out) >= num:
                break
            if t.get("Text") and t.get("FirstURL"):
                out.append(_item(t["Text"][:100], t["FirstURL"], t["Text"]))
    return out or None


PROVIDERS: List[Tuple[str, Callable[[str, int], Optional[List[Result]]]]] = [
    ("smithery-exa", search_smithery_exa),
    ("google-pse", search_google_pse),
    ("tavily", search_tavily),
    ("serper", search_serper),
    ("brave", search_brave),
    ("searxng", search_searxng),
    ("duckduckgo", search_duckduckgo),
]


def search(query: str, num_results: int = 10, providers=None) -> Tuple[List[Result], str]:
    """
    Devuelve (resultados, fuente). Fuente "none" si ningún proveedor respondió.
    """
    num = num_results or 10
    for name, fn in providers or PROVIDERS:
        try:
            results = fn(query, num)
        except (requests.RequestException, ValueError) as e:
            log.debug("%s failed: %s", name, e)
            continue
        if results:
            log.debug("%d results from %s", len(results), name)
            return results[:num], name
    return [], "none"
