# droidpatch/services/errors.py
from __future__ import annotations


class DroidPatchError(Exception):
    """Base error for droidpatch."""


class BinaryNotFoundError(DroidPatchError, FileNotFoundError):
    """Input binary is missing or not readable."""


class PatchDefinitionError(DroidPatchError, ValueError):
    """A patch descriptor violates its contract (empty pattern, length mismatch...)."""


class AliasError(DroidPatchError):
    pass


class MetadataError(DroidPatchError):
    pass
