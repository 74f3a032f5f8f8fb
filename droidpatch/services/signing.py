# droidpatch/services/signing.py
from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

log = logging.getLogger(__name__)

SIGN_TIMEOUT = float(os.getenv("DROID_PATCH_SIGN_TIMEOUT", "60"))


def needs_signing() -> bool:
    return sys.platform == "darwin"


def _run(cmd: list[str]) -> bool:
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=SIGN_TIMEOUT)
        return True
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("%s failed: %s", cmd[0], e)
        return False


def resign(path) -> bool:
    """
    Ad-hoc re-sign a modified binary and clear quarantine xattrs.
    Best effort: returns False on failure, never raises.
    """
    p = str(Path(path))
    ok = _run(["codesign", "--force", "--deep", "--sign", "-", p])
    if ok:
        log.info("re-signed %s", p)
    else:
        log.warning("could not re-sign %s; run: codesign --force --deep --sign - %s", p, p)
    # xattr es opcional
    _run(["xattr", "-cr", p])
    return ok
