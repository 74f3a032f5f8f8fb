"""Unit tests for the pattern matcher."""

import random

import pytest

from droidpatch.services import matcher


class TestFindAll:
    """Tests for find_all()."""

    def test_single_match(self):
        """Finds the offset of a single occurrence."""
        assert matcher.find_all(b"prefix_isCustom:!0_suffix", b"isCustom:!0") == [7]

    def test_multiple_matches_ascending(self):
        """Returns every occurrence in ascending order."""
        assert matcher.find_all(b"abcabcabc", b"bc") == [1, 4, 7]

    def test_overlapping_matches_not_returned(self):
        """Scan resumes after the end of a match, so 'aaa' holds one 'aa'."""
        assert matcher.find_all(b"aaa", b"aa") == [0]
        assert matcher.find_all(b"aaaa", b"aa") == [0, 2]

    def test_no_match(self):
        assert matcher.find_all(b"hello", b"xyz") == []

    def test_empty_pattern_rejected(self):
        """An empty pattern is not a valid input."""
        with pytest.raises(ValueError):
            matcher.find_all(b"abc", b"")

    def test_works_on_bytearray(self):
        assert matcher.find_all(bytearray(b"\x00\xff\x00\xff"), b"\xff") == [1, 3]

    def test_offsets_are_exact_and_disjoint(self):
        """Random buffers: offsets ascend, never overlap and point at the pattern."""
        rng = random.Random(1234)
        for _ in range(200):
            buf = bytes(rng.choice(b"ab") for _ in range(rng.randint(0, 64)))
            pat = bytes(rng.choice(b"ab") for _ in range(rng.randint(1, 4)))
            hits = matcher.find_all(buf, pat)
            for a, b in zip(hits, hits[1:]):
                assert b >= a + len(pat)
            for h in hits:
                assert buf[h:h + len(pat)] == pat


class TestRegexAndContext:
    """Tests for find_regex() and context()."""

    def test_regex_offsets_are_byte_offsets(self):
        """latin-1 decoding keeps text offsets equal to byte offsets."""
        buf = b"\xff\xfe\x80isCustom:!0"
        hits = matcher.find_regex(buf, r"isCustom:!(\d)")
        assert [m.start() for m in hits] == [3]
        assert hits[0].group(1) == "0"

    def test_encode_decode_are_inverse(self):
        raw = bytes(range(256))
        assert matcher.encode(matcher.decode(raw)) == raw

    def test_context_masks_non_printables(self):
        assert matcher.context(b"\x00abc\x01", 1, 3, size=1) == ".abc."

    def test_context_clamps_to_buffer(self):
        assert matcher.context(b"abc", 0, 3, size=25) == "abc"

    def test_contains(self):
        assert matcher.contains(b"hello", b"ell") is True
        assert matcher.contains(b"hello", b"") is False
