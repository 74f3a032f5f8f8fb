# droidpatch/services/descriptors.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from droidpatch.services.errors import PatchDefinitionError

# -------------------------------
# Modelos
# -------------------------------
class Variant(BaseModel):
    pattern: bytes
    replacement: bytes

    @model_validator(mode="after")
    def _same_length(self):
        if not self.pattern:
            raise ValueError("variant pattern must not be empty")
        # se sobrescribe en sitio: largo distinto corrompe todos los offsets siguientes
        if len(self.pattern) != len(self.replacement):
            raise ValueError(
                f"pattern ({len(self.pattern)} bytes) and replacement "
                f"({len(self.replacement)} bytes) must have the same length"
            )
        return self


class PatchDescriptor(BaseModel):
    """
    One named modification. `variants` are tried in order and the first one
    found wins; `regex_pattern` is the text-level alternative for patterns
    with capture groups.
    """

    name: str
    description: str = ""
    variants: List[Variant] = Field(default_factory=list)
    regex_pattern: Optional[str] = None
    regex_replacement: Optional[str] = None
    already_patched_regex: Optional[str] = None

    @field_validator("regex_pattern", "already_patched_regex")
    @classmethod
    def _compiles(cls, v):
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid regex {v!r}: {e}") from e
        return v

    @model_validator(mode="after")
    def _has_pattern(self):
        if not self.name:
            raise ValueError("descriptor name must not be empty")
        if not self.variants and not self.regex_pattern:
            raise ValueError(f"{self.name}: needs at least one variant or a regex_pattern")
        if self.regex_pattern and self.regex_replacement is None:
            raise ValueError(f"{self.name}: regex_pattern without regex_replacement")
        if self.regex_pattern:
            # referencias de grupo inválidas fallan aquí y no a mitad de parche
            try:
                re.compile(self.regex_pattern).sub(self.regex_replacement, "")
            except (re.error, IndexError) as e:
                raise ValueError(f"{self.name}: invalid regex_replacement {self.regex_replacement!r}: {e}") from e
        return self

    @property
    def is_regex(self) -> bool:
        return not self.variants and bool(self.regex_pattern)


class PatchFlags(BaseModel):
    """Which built-in patches an alias was created with (persisted for `update`)."""

    is_custom: bool = False
    skip_login: bool = False
    api_base: Optional[str] = None
    websearch: bool = False
    standalone: bool = False
    recipe: Optional[str] = None

    def any(self) -> bool:
        return bool(self.is_custom or self.skip_login or self.api_base
                    or self.websearch or self.standalone or self.recipe)

    def needs_proxy(self) -> bool:
        return self.websearch or self.standalone


def make_descriptor(name: str, description: str = "", **kw) -> PatchDescriptor:
    try:
        return PatchDescriptor(name=name, description=description, **kw)
    except ValidationError as e:
        raise PatchDefinitionError(f"invalid patch '{name}': {e}") from e


def single(name: str, description: str, pattern: bytes, replacement: bytes) -> PatchDescriptor:
    return make_descriptor(name, description, variants=[{"pattern": pattern, "replacement": replacement}])

# -------------------------------
# Parches incluidos
# -------------------------------
FACTORY_API_URL = "https://api.factory.ai"
FAKE_API_KEY = '"fk-droid-patch-skip-00000"'


def is_custom() -> PatchDescriptor:
    return single(
        "isCustom",
        "Change isCustom:!0 to isCustom:!1 (context compression for custom models)",
        b"isCustom:!0",
        b"isCustom:!1",
    )


def skip_login() -> PatchDescriptor:
    # 27 bytes -> 27 bytes (25 + comillas)
    return single(
        "skipLogin",
        f"Replace process.env.FACTORY_API_KEY with {FAKE_API_KEY}",
        b"process.env.FACTORY_API_KEY",
        FAKE_API_KEY.encode(),
    )


def normalize_url(url: str) -> str:
    return url.strip().rstrip("/")


def api_base(url: str) -> PatchDescriptor:
    """Replace the 22-char Factory API URL, padding the new one with spaces."""
    u = normalize_url(url)
    if not u:
        raise PatchDefinitionError("API base URL must not be empty")
    if len(u) > len(FACTORY_API_URL):
        raise PatchDefinitionError(
            f"API base URL must be {len(FACTORY_API_URL)} characters or less "
            f"(got {len(u)}: {u!r})"
        )
    return single(
        "apiBase",
        f'Replace Factory API URL with "{u}"',
        FACTORY_API_URL.encode(),
        u.ljust(len(FACTORY_API_URL)).encode(),
    )


def build_descriptors(flags: PatchFlags, proxy_url: Optional[str] = None) -> List[PatchDescriptor]:
    """
    Ordered descriptor list for a set of flags. With websearch/standalone the
    binary is pointed at the local proxy; `flags.api_base` then becomes the
    proxy's upstream instead of being patched in.
    """
    out: List[PatchDescriptor] = []
    if flags.is_custom:
        out.append(is_custom())
    if flags.skip_login:
        out.append(skip_login())
    if flags.needs_proxy():
        if not proxy_url:
            raise PatchDefinitionError("proxy URL required for websearch/standalone")
        out.append(api_base(proxy_url))
    elif flags.api_base:
        out.append(api_base(flags.api_base))
    if flags.recipe:
        out.extend(load_recipe(flags.recipe))
    return out

# -------------------------------
# Recetas YAML
# -------------------------------
def _hex_to_bytes(s: str) -> bytes:
    s = re.sub(r"[^0-9A-Fa-f]", " ", s or "")
    parts = [p for p in s.split() if p]
    # admite "AABB" además de "AA BB"
    if len(parts) == 1 and len(parts[0]) > 2:
        return bytes.fromhex(parts[0])
    return bytes(int(p, 16) for p in parts)


def _variant_from(entry: Dict[str, Any]) -> Dict[str, bytes]:
    if "find_hex" in entry:
        try:
            return {"pattern": _hex_to_bytes(entry["find_hex"]),
                    "replacement": _hex_to_bytes(entry.get("replace_hex", ""))}
        except ValueError as e:
            raise PatchDefinitionError(f"invalid hex in {entry}: {e}") from e
    if "find" in entry:
        return {"pattern": str(entry["find"]).encode(),
                "replacement": str(entry.get("replace", "")).encode()}
    raise PatchDefinitionError(f"variant needs find/find_hex: {entry}")


def descriptor_from_dict(data: Dict[str, Any]) -> PatchDescriptor:
    name = str(data.get("name") or data.get("id") or "")
    kw: Dict[str, Any] = {}
    if "variants" in data:
        kw["variants"] = [_variant_from(v) for v in data["variants"] or []]
    elif "find" in data or "find_hex" in data:
        kw["variants"] = [_variant_from(data)]
    if "regex" in data:
        kw["regex_pattern"] = data["regex"]
        kw["regex_replacement"] = data.get("regex_replace")
        kw["already_patched_regex"] = data.get("already_patched_regex")
    return make_descriptor(name, str(data.get("description") or ""), **kw)


def load_recipe(path) -> List[PatchDescriptor]:
    """
    Lee una receta YAML: lista de parches, o {patches: [...]}.
    """
    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or []
    except (OSError, yaml.YAMLError) as e:
        raise PatchDefinitionError(f"could not load recipe {p}: {e}") from e
    if isinstance(data, dict):
        data = data.get("patches") or []
    if not isinstance(data, list):
        raise PatchDefinitionError(f"recipe {p}: expected a list of patches")
    return [descriptor_from_dict(d) for d in data]
