# droidpatch/services/patch_engine.py
# Motor de parches: buscar -> aplicar en el buffer de trabajo -> escribir -> verificar.
from __future__ import annotations

import errno
import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from droidpatch.services import matcher, signing
from droidpatch.services.descriptors import PatchDescriptor
from droidpatch.services.errors import BinaryNotFoundError

log = logging.getLogger(__name__)

EXEC_MODE = 0o755
CONTEXT_HITS = 5

# errores de "archivo en uso" (Windows / binario corriendo); permisos denegados no cuentan
_LOCKED_ERRNOS = {errno.EBUSY, getattr(errno, "ETXTBSY", errno.EBUSY)}
_WIN_SHARING_VIOLATION = 32


class PatchResult(BaseModel):
    name: str
    found: int = 0
    positions: List[int] = Field(default_factory=list)
    success: bool = False
    already_patched: bool = False
    variant: Optional[int] = None
    verified: Optional[bool] = None
    error: Optional[str] = None


class PatchRunResult(BaseModel):
    success: bool
    dry_run: bool = False
    results: List[PatchResult] = Field(default_factory=list)
    output_path: Optional[Path] = None
    no_patch_needed: bool = False
    patched_count: int = 0
    backup_path: Optional[Path] = None
    fallback_output: bool = False
    signed: Optional[bool] = None

    def applied_names(self) -> List[str]:
        return [r.name for r in self.results if r.success]

    def failed(self) -> List[PatchResult]:
        return [r for r in self.results if not r.success or r.verified is False]

# -------------------------------
# Búsqueda por descriptor
# -------------------------------
def _expand(m: "re.Match[str]", template: str) -> str:
    return m.expand(template)


def _pending_regex(buf, d: PatchDescriptor) -> List["re.Match[str]"]:
    # matches cuyo reemplazo cambia algo (los no-op ya están parchados)
    return [m for m in matcher.find_regex(buf, d.regex_pattern)
            if _expand(m, d.regex_replacement) != m.group(0)]


def _looks_patched(buf, d: PatchDescriptor) -> bool:
    for v in d.variants:
        if matcher.contains(buf, v.replacement):
            return True
    if d.regex_pattern:
        if d.already_patched_regex:
            return bool(re.search(d.already_patched_regex, matcher.decode(buf)))
        if matcher.find_regex(buf, d.regex_pattern):
            return True
        # sin grupos: el texto de reemplazo es literal
        if "\\" not in d.regex_replacement:
            return matcher.contains(buf, matcher.encode(d.regex_replacement))
    return False


def _apply_variants(buf: bytearray, d: PatchDescriptor, res: PatchResult, dry_run: bool) -> bool:
    for idx, v in enumerate(d.variants):
        hits = matcher.find_all(buf, v.pattern)
        if not hits:
            continue
        res.variant = idx
        res.found = len(hits)
        res.positions = hits
        if not dry_run:
            L = len(v.replacement)
            for pos in hits:
                buf[pos:pos + L] = v.replacement
        return True
    return False


def _apply_regex(buf: bytearray, d: PatchDescriptor, res: PatchResult, dry_run: bool) -> bool:
    pending = _pending_regex(buf, d)
    if not pending:
        return False
    edits = []
    for m in pending:
        old = matcher.encode(m.group(0))
        new = matcher.encode(_expand(m, d.regex_replacement))
        if len(new) != len(old):
            res.error = (f"regex replacement changes length at 0x{m.start():08x} "
                         f"({len(old)} -> {len(new)} bytes)")
            res.found = len(pending)
            res.positions = [x.start() for x in pending]
            return True
        pos = buf.find(old, m.start())
        edits.append((pos, new))
    res.found = len(edits)
    res.positions = [pos for pos, _ in edits]
    if not dry_run:
        for pos, new in edits:
            buf[pos:pos + len(new)] = new
    return True


def check_descriptor(buf: bytearray, d: PatchDescriptor, dry_run: bool = False, verbose: bool = False) -> PatchResult:
    """
    Evalúa un descriptor contra el buffer actual y, si no es dry-run,
    lo aplica en el mismo buffer para que el siguiente vea el cambio.
    """
    res = PatchResult(name=d.name)
    log.info("checking patch %s: %s", d.name, d.description)

    found = _apply_variants(buf, d, res, dry_run) if d.variants else False
    if not found and d.regex_pattern:
        found = _apply_regex(buf, d, res, dry_run)

    if found:
        if res.error:
            log.error("%s: %s", d.name, res.error)
            return res
        res.success = True
        log.info("%s: found %d occurrence(s)", d.name, res.found)
        if verbose:
            width = len(d.variants[res.variant].pattern) if res.variant is not None else 1
            for pos in res.positions[:CONTEXT_HITS]:
                log.info("  @ 0x%08x: ...%s...", pos, matcher.context(buf, pos, width))
            if len(res.positions) > CONTEXT_HITS:
                log.info("  ... and %d more", len(res.positions) - CONTEXT_HITS)
        return res

    if _looks_patched(buf, d):
        res.success = True
        res.already_patched = True
        log.info("%s: pattern not found, binary appears to be already patched", d.name)
    else:
        log.warning("%s: pattern not found", d.name)
    return res

# -------------------------------
# Verificación
# -------------------------------
def remaining_occurrences(buf, d: PatchDescriptor) -> int:
    n = sum(len(matcher.find_all(buf, v.pattern)) for v in d.variants)
    if d.regex_pattern:
        n += len(_pending_regex(buf, d))
    return n


def verify(path: Path, descriptors: Sequence[PatchDescriptor], results: Sequence[PatchResult]) -> bool:
    data = path.read_bytes()
    ok = True
    for d, r in zip(descriptors, results):
        left = remaining_occurrences(data, d)
        r.verified = left == 0
        if r.verified:
            log.info("%s: verified", d.name)
        else:
            log.error("%s: %d occurrence(s) not patched in %s", d.name, left, path)
            ok = False
    return ok

# -------------------------------
# IO
# -------------------------------
def _is_locked(e: OSError, path: Path) -> bool:
    if getattr(e, "winerror", None) == _WIN_SHARING_VIOLATION:
        return True
    return e.errno in _LOCKED_ERRNOS and path.exists()


def fallback_path(path: Path, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return path.with_name(f"{path.name}.{stamp}")


def write_output(path: Path, data: bytes) -> Path:
    """
    Escribe el binario; si el destino está bloqueado usa <path>.<timestamp>.
    """
    try:
        path.write_bytes(data)
        return path
    except OSError as e:
        if not _is_locked(e, path):
            raise
        alt = fallback_path(path)
        log.warning("%s is locked (%s), writing to %s instead", path, e, alt)
        alt.write_bytes(data)
        return alt


def make_backup_copy(input_path: Path) -> Path:
    backup = Path(f"{input_path}.backup")
    if backup.exists():
        # nunca se pisa: se conserva la copia más antigua
        log.info("backup already exists: %s", backup)
    else:
        shutil.copy2(input_path, backup)
        log.info("created backup: %s", backup)
    return backup

# -------------------------------
# API
# -------------------------------
def apply_patches(
    input_path,
    output_path=None,
    descriptors: Iterable[PatchDescriptor] = (),
    dry_run: bool = False,
    make_backup: bool = True,
    verbose: bool = False,
    sign: Optional[bool] = None,
) -> PatchRunResult:
    src = Path(input_path)
    dst = Path(output_path) if output_path else Path(f"{src}.patched")
    descriptors = list(descriptors)

    if not src.is_file() or not os.access(src, os.R_OK):
        raise BinaryNotFoundError(f"Binary not found: {src}")

    data = src.read_bytes()
    log.info("read %s (%.2f MB)", src, len(data) / (1024 * 1024))

    buf = bytearray(data)
    results = [check_descriptor(buf, d, dry_run=dry_run, verbose=verbose) for d in descriptors]

    if dry_run:
        return PatchRunResult(
            success=all(r.success or r.already_patched for r in results),
            dry_run=True,
            results=results,
        )

    needed = [r for r in results if r.found > 0 and r.success and not r.already_patched]
    if not needed:
        if all(r.already_patched for r in results):
            log.info("all patches already applied, %s is up to date", src)
            return PatchRunResult(success=True, results=results, output_path=src, no_patch_needed=True)
        log.warning("no patches could be applied to %s", src)
        return PatchRunResult(success=False, results=results)

    backup = make_backup_copy(src) if make_backup else None

    patched_count = sum(len(r.positions) for r in needed)
    written = write_output(dst, bytes(buf))
    os.chmod(written, EXEC_MODE)
    log.info("applied %d patch(es), saved %s", patched_count, written)

    verified = verify(written, descriptors, results)

    if sign is None:
        sign = signing.needs_signing()
    signed = signing.resign(written) if sign else None

    return PatchRunResult(
        success=verified and all(r.success for r in results),
        results=results,
        output_path=written,
        patched_count=patched_count,
        backup_path=backup,
        fallback_output=written != dst,
        signed=signed,
    )
