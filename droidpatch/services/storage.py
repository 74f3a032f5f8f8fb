# droidpatch/services/storage.py
from __future__ import annotations

import os, json
from pathlib import Path
from typing import Iterator, Optional

# -------------------------------
# Config (env)
# -------------------------------
UPSTREAM_API = os.getenv("DROID_UPSTREAM_API", "https://api.factory.ai")
PROXY_HOST = "127.0.0.1"
PROXY_PORT = int(os.getenv("DROID_PROXY_PORT", "23119"))
PROXY_IDLE_TIMEOUT = int(os.getenv("DROID_PROXY_IDLE_TIMEOUT", "300"))  # 0 = nunca
PROXY_PID_FILE = Path(os.getenv("DROID_PROXY_PID_FILE", "/tmp/droid-search-proxy.pid"))
PROXY_LOG_FILE = Path(os.getenv("DROID_PROXY_LOG_FILE", "/tmp/droid-search-proxy.log"))
SEARCH_DEBUG = os.getenv("DROID_SEARCH_DEBUG") == "1"


def proxy_url(port: Optional[int] = None) -> str:
    return f"http://{PROXY_HOST}:{port or PROXY_PORT}"


def data_dir() -> Path:
    # se lee en cada llamada para que DROID_PATCH_HOME se pueda cambiar en tests
    return Path(os.getenv("DROID_PATCH_HOME", str(Path.home() / ".droid-patch")))


def aliases_dir() -> Path:
    return data_dir() / "aliases"


def bins_dir() -> Path:
    return data_dir() / "bins"


def meta_dir() -> Path:
    return data_dir() / "meta"


def websearch_dir() -> Path:
    return data_dir() / "websearch"


def ensure_dirs() -> None:
    for d in (data_dir(), aliases_dir(), bins_dir(), meta_dir(), websearch_dir()):
        d.mkdir(parents=True, exist_ok=True)


def default_binary_candidates() -> list[Path]:
    home = Path.home()
    return [home / ".droid" / "bin" / "droid", Path("/usr/local/bin/droid"), Path("./droid")]


def find_default_binary() -> Path:
    cands = default_binary_candidates()
    for p in cands:
        if p.exists():
            return p
    return cands[0]

# -------------------------------
# JSON helpers
# -------------------------------
def save_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def load_json(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def iter_json(folder: Path) -> Iterator[tuple[Path, dict]]:
    # más nuevos primero
    if not folder.exists():
        return
    files = sorted(folder.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    for p in files:
        try:
            with open(p, "r", encoding="utf-8") as f:
                yield p, json.load(f)
        except (OSError, ValueError):
            continue
