# droidpatch/services/wrapper.py
# Genera el launcher que levanta el proxy local y luego ejecuta el binario.
from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path
from string import Template
from typing import Optional

from droidpatch.services import storage

PASSTHROUGH_COMMANDS = ("help", "version", "completion", "completions", "exec")
PASSTHROUGH_FLAGS = ("--help", "-h", "--version", "-V")


class _ShellTemplate(Template):
    # "$" es del shell
    delimiter = "%%"


WRAPPER_TEMPLATE = _ShellTemplate("""#!/bin/sh
# droid-patch launcher for %%alias
BIN=%%binary
PORT="${DROID_PROXY_PORT:-%%port}"
LOG=%%log

should_passthrough() {
  case "$1" in
    %%commands) return 0 ;;
  esac
  for a in "$@"; do
    case "$a" in
      %%flags) return 0 ;;
    esac
  done
  return 1
}

proxy_up() {
  curl -s -o /dev/null "http://127.0.0.1:$PORT/health"
}

if should_passthrough "$@"; then
  exec "$BIN" "$@"
fi

if ! proxy_up; then
  nohup %%python -m droidpatch.main --port "$PORT" --upstream %%upstream%%standalone >> "$LOG" 2>&1 &
  i=0
  while [ $i -lt 50 ]; do
    proxy_up && break
    sleep 0.1
    i=$((i + 1))
  done
fi

exec "$BIN" "$@"
""")


def render_wrapper(target_binary, alias_name: str, *, upstream: Optional[str] = None,
                   standalone: bool = False, port: Optional[int] = None,
                   python: Optional[str] = None) -> str:
    return WRAPPER_TEMPLATE.substitute(
        alias=alias_name,
        binary=shlex.quote(str(target_binary)),
        port=int(port or storage.PROXY_PORT),
        log=shlex.quote(str(storage.PROXY_LOG_FILE)),
        commands="|".join(PASSTHROUGH_COMMANDS),
        flags="|".join(PASSTHROUGH_FLAGS),
        python=shlex.quote(python or sys.executable),
        upstream=shlex.quote(upstream or storage.UPSTREAM_API),
        standalone=" --standalone" if standalone else "",
    )


def write_wrapper(target_binary, alias_name: str, **kw) -> Path:
    out_dir = storage.websearch_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / alias_name
    path.write_text(render_wrapper(target_binary, alias_name, **kw), encoding="utf-8")
    os.chmod(path, 0o755)
    return path
