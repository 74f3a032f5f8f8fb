# droidpatch/services/alias.py
# Alias: binario en bins/ + symlink en un dir del PATH (o aliases/ + rc del shell).
from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from droidpatch.services import signing, storage
from droidpatch.services.errors import AliasError

log = logging.getLogger(__name__)

ORIGINAL_BACKUP_NAME = "droid-original-latest"
PATH_MARKER = "droid-patch/aliases"


def common_path_dirs() -> List[Path]:
    home = Path.home()
    rel = [".local/bin", "bin", ".bin", ".npm-global/bin", ".npm/bin", ".pnpm-global/bin",
           ".yarn/bin", ".cargo/bin", "go/bin", ".deno/bin", ".bun/bin",
           ".local/share/mise/shims", ".asdf/shims", ".volta/bin"]
    return [home / r for r in rel] + [Path("/opt/homebrew/bin"), Path("/usr/local/bin")]


class AliasResult(BaseModel):
    alias_path: Path
    binary_path: Path
    immediate: bool = False


class AliasInfo(BaseModel):
    name: str
    target: str
    location: Path
    immediate: bool


def _path_entries() -> List[str]:
    return [p for p in os.environ.get("PATH", "").split(os.pathsep) if p]


def find_writable_path_dir() -> Optional[Path]:
    entries = _path_entries()
    for d in common_path_dirs():
        if str(d) not in entries:
            continue
        try:
            d.mkdir(parents=True, exist_ok=True)
            probe = d / f".droid-patch-test-{int(time.time() * 1000)}"
            probe.write_text("")
            probe.unlink()
            return d
        except OSError:
            continue
    return None


def shell_config_path() -> Path:
    home = Path.home()
    shell = Path(os.environ.get("SHELL", "/bin/bash")).name
    if shell == "zsh":
        return home / ".zshrc"
    if shell == "bash":
        prof = home / ".bash_profile"
        return prof if prof.exists() else home / ".bashrc"
    if shell == "fish":
        return home / ".config" / "fish" / "config.fish"
    return home / ".profile"


def path_export_line(shell_rc: Path) -> str:
    if shell_rc.name == "config.fish":
        return f'\n# Added by droid-patch\nfish_add_path "{storage.aliases_dir()}"\n'
    return f'\n# Added by droid-patch\nexport PATH="{storage.aliases_dir()}:$PATH"\n'


def is_path_configured(shell_rc: Path) -> bool:
    try:
        text = shell_rc.read_text(encoding="utf-8")
        return PATH_MARKER in text or str(storage.aliases_dir()) in text
    except OSError:
        return False


def configure_path(shell_rc: Optional[Path] = None) -> bool:
    """Añade aliases/ al PATH en el rc del shell. True si ya estaba o se escribió."""
    if str(storage.aliases_dir()) in _path_entries():
        return True
    rc = shell_rc or shell_config_path()
    if is_path_configured(rc):
        return True
    try:
        rc.parent.mkdir(parents=True, exist_ok=True)
        with open(rc, "a", encoding="utf-8") as f:
            f.write(path_export_line(rc))
        log.info("added PATH export to %s", rc)
        return True
    except OSError as e:
        log.warning("could not write to %s: %s", rc, e)
        return False


def _replace_link(link: Path, target: Path) -> None:
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)


def _install(target: Path, alias_name: str) -> AliasResult:
    pdir = find_writable_path_dir()
    if pdir:
        link = pdir / alias_name
        _replace_link(link, target)
        log.info("created %s -> %s", link, target)
        return AliasResult(alias_path=link, binary_path=target, immediate=True)

    link = storage.aliases_dir() / alias_name
    _replace_link(link, target)
    log.info("no writable PATH directory, created %s -> %s", link, target)
    configure_path()
    immediate = str(storage.aliases_dir()) in _path_entries()
    return AliasResult(alias_path=link, binary_path=target, immediate=immediate)


def check_alias_name(alias_name: str) -> str:
    if not alias_name or "/" in alias_name or alias_name.startswith("."):
        raise AliasError(f"invalid alias name: {alias_name!r}")
    return alias_name


def store_binary(patched_binary, alias_name: str) -> Path:
    """Copia el binario parchado a bins/<alias>-patched."""
    check_alias_name(alias_name)
    storage.ensure_dirs()
    src = Path(patched_binary)
    if not src.is_file():
        raise AliasError(f"patched binary not found: {src}")
    dest = storage.bins_dir() / f"{alias_name}-patched"
    if src.resolve() != dest.resolve():
        shutil.copyfile(src, dest)
    os.chmod(dest, 0o755)
    if signing.needs_signing():
        signing.resign(dest)
    return dest


def create_alias(patched_binary, alias_name: str) -> AliasResult:
    return _install(store_binary(patched_binary, alias_name), alias_name)


def create_wrapper_alias(wrapper_script, alias_name: str) -> AliasResult:
    check_alias_name(alias_name)
    storage.ensure_dirs()
    w = Path(wrapper_script)
    if not w.is_file():
        raise AliasError(f"wrapper not found: {w}")
    os.chmod(w, 0o755)
    return _install(w, alias_name)


def _ours(target: str) -> bool:
    root = str(storage.data_dir())
    return target.startswith(root) or ".droid-patch/" in target


def remove_alias(alias_name: str) -> bool:
    check_alias_name(alias_name)
    removed = False
    for d in common_path_dirs():
        link = d / alias_name
        if link.is_symlink() and _ours(os.readlink(link)):
            link.unlink()
            log.info("removed %s", link)
            removed = True

    for p in (storage.aliases_dir() / alias_name,
              storage.bins_dir() / f"{alias_name}-patched",
              storage.websearch_dir() / alias_name):
        if p.is_symlink() or p.exists():
            p.unlink()
            log.info("removed %s", p)
            removed = True
    return removed


def list_aliases() -> List[AliasInfo]:
    out: List[AliasInfo] = []
    seen = set()
    for d in common_path_dirs():
        if not d.is_dir():
            continue
        try:
            entries = sorted(d.iterdir())
        except OSError:
            continue
        for p in entries:
            if p.is_symlink() and _ours(os.readlink(p)):
                out.append(AliasInfo(name=p.name, target=os.readlink(p), location=d, immediate=True))
                seen.add(p.name)

    adir = storage.aliases_dir()
    if adir.is_dir():
        for p in sorted(adir.iterdir()):
            if p.is_symlink() and p.name not in seen:
                out.append(AliasInfo(name=p.name, target=os.readlink(p), location=adir, immediate=False))
    return out

# -------------------------------
# Reemplazo del binario original
# -------------------------------
def replace_original(patched_binary, original_path) -> Path:
    """Sobrescribe el binario original, guardando una copia en bins/ (una sola vez)."""
    storage.ensure_dirs()
    original = Path(original_path)
    backup = storage.bins_dir() / ORIGINAL_BACKUP_NAME
    if not backup.exists():
        shutil.copy2(original, backup)
        log.info("created backup %s", backup)
    shutil.copyfile(patched_binary, original)
    os.chmod(original, 0o755)
    if signing.needs_signing():
        signing.resign(original)
    return backup


def restore_original(original_path) -> Path:
    original = Path(original_path)
    src = storage.bins_dir() / ORIGINAL_BACKUP_NAME
    if not src.exists():
        src = Path(f"{original}.backup")
    if not src.exists():
        raise AliasError(f"no backup found for {original}")
    original.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, original)
    os.chmod(original, 0o755)
    if signing.needs_signing():
        signing.resign(original)
    log.info("restored %s from %s", original, src)
    return src
