"""Shared pytest fixtures."""

import os

import pytest

from droidpatch.services.descriptors import single

ORIGINAL = b"prefix_isCustom:!0_suffix"
PATCHED = b"prefix_isCustom:!1_suffix"


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point HOME, DROID_PATCH_HOME and PATH at a throwaway directory."""
    home = tmp_path / "home"
    local_bin = home / ".local" / "bin"
    local_bin.mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("DROID_PATCH_HOME", str(home / ".droid-patch"))
    monkeypatch.setenv("PATH", os.pathsep.join([str(local_bin), "/usr/bin", "/bin"]))
    monkeypatch.setenv("SHELL", "/bin/bash")
    return home


@pytest.fixture
def is_custom_patch():
    return single("isCustom", "Change isCustom:!0 to isCustom:!1", b"isCustom:!0", b"isCustom:!1")


@pytest.fixture
def binary(tmp_path):
    """A tiny fake droid binary containing the isCustom flag."""
    p = tmp_path / "droid"
    p.write_bytes(ORIGINAL)
    return p
