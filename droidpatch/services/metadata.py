# droidpatch/services/metadata.py
# Metadata por alias: qué parches se aplicaron, para que `update` los repita.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from droidpatch import __version__
from droidpatch.services import storage
from droidpatch.services.descriptors import PatchFlags
from droidpatch.services.errors import MetadataError

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AliasMetadata(BaseModel):
    name: str
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
    original_binary_path: str
    alias_path: Optional[str] = None
    droidpatch_version: Optional[str] = __version__
    patches: PatchFlags = Field(default_factory=PatchFlags)
    applied: List[str] = Field(default_factory=list)


def meta_path(alias_name: str) -> Path:
    if not alias_name or "/" in alias_name or alias_name.startswith("."):
        raise MetadataError(f"invalid alias name: {alias_name!r}")
    return storage.meta_dir() / f"{alias_name}.json"


def create_metadata(name: str, original_binary_path, patches: PatchFlags,
                    applied: Optional[List[str]] = None, alias_path=None) -> AliasMetadata:
    return AliasMetadata(
        name=name,
        original_binary_path=str(original_binary_path),
        alias_path=str(alias_path) if alias_path else None,
        patches=patches,
        applied=list(applied or []),
    )


def save_metadata(meta: AliasMetadata) -> Path:
    p = meta_path(meta.name)
    storage.save_json(p, meta.model_dump(mode="json"))
    return p


def load_metadata(alias_name: str) -> Optional[AliasMetadata]:
    """None si no existe o está corrupta."""
    p = meta_path(alias_name)
    try:
        data = storage.load_json(p)
        return AliasMetadata.model_validate(data) if data is not None else None
    except (OSError, ValueError, ValidationError) as e:
        log.warning("ignoring unreadable metadata %s: %s", p, e)
        return None


def list_metadata() -> List[AliasMetadata]:
    out = []
    for p, data in storage.iter_json(storage.meta_dir()):
        try:
            out.append(AliasMetadata.model_validate(data))
        except ValidationError as e:
            log.warning("ignoring invalid metadata %s: %s", p, e)
    return out


def remove_metadata(alias_name: str) -> bool:
    p = meta_path(alias_name)
    if not p.exists():
        return False
    p.unlink()
    return True


def touch(meta: AliasMetadata, new_binary_path=None) -> AliasMetadata:
    meta.updated_at = _now()
    meta.droidpatch_version = __version__
    if new_binary_path is not None:
        meta.original_binary_path = str(new_binary_path)
    return meta


def format_patches(flags: PatchFlags) -> str:
    applied = []
    if flags.is_custom:
        applied.append("isCustom")
    if flags.skip_login:
        applied.append("skipLogin")
    if flags.api_base and not flags.needs_proxy():
        applied.append(f"apiBase({flags.api_base})")
    if flags.websearch:
        applied.append(f"websearch({flags.api_base or storage.UPSTREAM_API})")
    if flags.standalone:
        applied.append("standalone")
    if flags.recipe:
        applied.append(f"recipe({flags.recipe})")
    return ", ".join(applied) if applied else "(none)"
