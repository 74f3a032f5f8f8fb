"""Unit tests for patch descriptors, built-in patches and YAML recipes."""

import pytest
from pydantic import ValidationError

from droidpatch.services import descriptors
from droidpatch.services.descriptors import PatchFlags, Variant, build_descriptors, load_recipe, single
from droidpatch.services.errors import PatchDefinitionError


class TestVariant:
    """Tests for the fixed-length invariant."""

    def test_equal_lengths_accepted(self):
        v = Variant(pattern=b"abc", replacement=b"xyz")
        assert v.pattern == b"abc"

    def test_length_mismatch_rejected(self):
        """A replacement of a different length would shift every later offset."""
        with pytest.raises(ValidationError):
            Variant(pattern=b"abc", replacement=b"abcd")

    def test_empty_pattern_rejected(self):
        with pytest.raises(ValidationError):
            Variant(pattern=b"", replacement=b"")

    def test_single_wraps_validation_error(self):
        with pytest.raises(PatchDefinitionError):
            single("bad", "", b"ab", b"abc")


class TestPatchDescriptor:
    """Tests for PatchDescriptor validation."""

    def test_needs_variant_or_regex(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("empty")

    def test_regex_needs_replacement(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("rx", regex_pattern=r"a(\d)")

    def test_invalid_regex_rejected(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("rx", regex_pattern="(", regex_replacement="x")

    def test_is_regex(self):
        d = descriptors.make_descriptor("rx", regex_pattern=r"a(\d)", regex_replacement=r"b\1")
        assert d.is_regex is True
        assert single("s", "", b"a", b"b").is_regex is False


class TestBuiltins:
    """Tests for the built-in droid patches."""

    def test_is_custom(self):
        d = descriptors.is_custom()
        assert d.name == "isCustom"
        assert d.variants[0].pattern == b"isCustom:!0"
        assert d.variants[0].replacement == b"isCustom:!1"

    def test_skip_login_same_length(self):
        v = descriptors.skip_login().variants[0]
        assert len(v.pattern) == len(v.replacement) == 27

    def test_api_base_pads_with_spaces(self):
        """Shorter URLs are right-padded to the original 22 bytes."""
        v = descriptors.api_base("http://127.0.0.1:3000/").variants[0]
        assert v.pattern == b"https://api.factory.ai"
        assert v.replacement == b"http://127.0.0.1:3000 "

    def test_api_base_too_long(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.api_base("https://my-very-long-host.example.com")

    def test_api_base_empty(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.api_base("///")


class TestBuildDescriptors:
    """Tests for build_descriptors()."""

    def test_order_follows_flags(self):
        flags = PatchFlags(is_custom=True, skip_login=True, api_base="http://localhost:80")
        assert [d.name for d in build_descriptors(flags)] == ["isCustom", "skipLogin", "apiBase"]

    def test_websearch_points_binary_at_proxy(self):
        """With a proxy the binary gets the proxy URL; api_base becomes the upstream."""
        flags = PatchFlags(websearch=True, api_base="http://other:1")
        ds = build_descriptors(flags, proxy_url="http://127.0.0.1:23119")
        assert [d.name for d in ds] == ["apiBase"]
        assert ds[0].variants[0].replacement == b"http://127.0.0.1:23119"

    def test_websearch_requires_proxy_url(self):
        with pytest.raises(PatchDefinitionError):
            build_descriptors(PatchFlags(standalone=True))

    def test_empty_flags(self):
        assert build_descriptors(PatchFlags()) == []
        assert PatchFlags().any() is False


RECIPE = """\
patches:
  - name: flag
    description: turn debug on
    find: "debug=0"
    replace: "debug=1"
  - name: jump
    find_hex: "74 05"
    replace_hex: "EB 05"
  - name: drift
    variants:
      - {find: "mode:a", replace: "mode:b"}
      - {find_hex: "AABB", replace_hex: "CCDD"}
  - name: rx
    regex: 'timeout:(\\d)'
    regex_replace: 'timeout:9'
    already_patched_regex: 'timeout:9'
"""


class TestRecipes:
    """Tests for YAML recipe loading."""

    def test_load_recipe(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text(RECIPE, encoding="utf-8")
        ds = load_recipe(p)
        assert [d.name for d in ds] == ["flag", "jump", "drift", "rx"]
        assert ds[0].description == "turn debug on"
        assert ds[1].variants[0].pattern == b"\x74\x05"
        assert ds[1].variants[0].replacement == b"\xeb\x05"
        assert ds[2].variants[1].pattern == b"\xaa\xbb"
        assert ds[3].regex_pattern == r"timeout:(\d)"
        assert ds[3].already_patched_regex == "timeout:9"

    def test_top_level_list(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text('- {name: a, find: "x", replace: "y"}\n', encoding="utf-8")
        assert [d.name for d in load_recipe(p)] == ["a"]

    def test_length_mismatch_in_recipe(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text('- {name: a, find: "x", replace: "yy"}\n', encoding="utf-8")
        with pytest.raises(PatchDefinitionError):
            load_recipe(p)

    def test_missing_file(self, tmp_path):
        with pytest.raises(PatchDefinitionError):
            load_recipe(tmp_path / "nope.yml")

    def test_not_a_list(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text("just a string\n", encoding="utf-8")
        with pytest.raises(PatchDefinitionError):
            load_recipe(p)

    def test_recipe_flag_is_appended(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text('- {name: extra, find: "x", replace: "y"}\n', encoding="utf-8")
        ds = build_descriptors(PatchFlags(is_custom=True, recipe=str(p)))
        assert [d.name for d in ds] == ["isCustom", "extra"]


class TestBadRecipeInput:
    """Malformed recipe values surface as PatchDefinitionError."""

    def test_bad_group_reference(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("rx", regex_pattern=r"a(\d)", regex_replacement=r"b\2")

    def test_unknown_named_group(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("rx", regex_pattern=r"a(\d)", regex_replacement=r"\g<nope>")

    def test_valid_backreference_accepted(self):
        d = descriptors.make_descriptor("rx", regex_pattern=r"a(\d)", regex_replacement=r"b\1")
        assert d.regex_replacement == r"b\1"

    def test_invalid_already_patched_regex(self):
        with pytest.raises(PatchDefinitionError):
            descriptors.make_descriptor("rx", regex_pattern="a", regex_replacement="b",
                                        already_patched_regex="[")

    def test_odd_length_hex(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text('- {name: a, find_hex: "ABC", replace_hex: "DEF"}\n', encoding="utf-8")
        with pytest.raises(PatchDefinitionError):
            load_recipe(p)

    def test_bad_regex_in_recipe(self, tmp_path):
        p = tmp_path / "recipe.yml"
        p.write_text("- {name: a, regex: '(', regex_replace: 'x'}\n", encoding="utf-8")
        with pytest.raises(PatchDefinitionError):
            load_recipe(p)
