"""Tests for the hashing module."""

from enum import Enum

import pytest

from decision_runtime.hashing import canonicalize, compute_hash, content_hash, stable_json_dumps


class _Color(str, Enum):
    RED = "RED"


class _WithDict:
    def to_dict(self):
        return {"b": 2, "a": 1}


class TestContentHash:
    """Tests for content_hash function."""

    def test_deterministic_same_dict(self) -> None:
        """Same dict produces same hash."""
        obj = {"a": 1, "b": 2}
        assert content_hash(obj) == content_hash(obj)

    def test_deterministic_different_key_order(self) -> None:
        """Dict order doesn't affect hash."""
        a = {"b": 1, "a": {"z": 3, "y": 2}}
        b = {"a": {"y": 2, "z": 3}, "b": 1}
        assert content_hash(a) == content_hash(b)

    def test_different_content_different_hash(self) -> None:
        """Different content produces different hash."""
        assert content_hash({"a": 1}) != content_hash({"a": 2})

    def test_returns_64_char_hex(self) -> None:
        """Hash is 64 character hex string."""
        result = content_hash({"test": "data"})
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)


class TestCanonicalize:
    """Tests for canonical JSON conversion."""

    def test_enum_and_to_dict(self) -> None:
        """Enums become values and objects with to_dict are expanded."""
        assert canonicalize({"c": _Color.RED, "o": _WithDict()}) == {"c": "RED", "o": {"a": 1, "b": 2}}

    def test_sets_sorted(self) -> None:
        """Sets serialize in sorted order."""
        assert canonicalize({"s": {"b", "a"}}) == {"s": ["a", "b"]}

    def test_stable_dumps_compact(self) -> None:
        """Dumps use sorted keys and no whitespace."""
        assert stable_json_dumps({"b": 1, "a": (1, 2)}) == '{"a":[1,2],"b":1}'


class TestComputeHash:
    """Tests for compute_hash function."""

    def test_sha256_known_value(self) -> None:
        """sha256 matches the well-known digest of the empty string."""
        assert compute_hash("", algorithm="sha256") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_truncate(self) -> None:
        """Output is truncated to the requested length."""
        assert len(compute_hash("abc", truncate=16)) == 16

    def test_bytes_and_str_agree(self) -> None:
        """Strings are hashed as UTF-8."""
        assert compute_hash("héllo") == compute_hash("héllo".encode("utf-8"))

    def test_unknown_algorithm(self) -> None:
        """Unknown algorithms raise."""
        with pytest.raises(ValueError):
            compute_hash("x", algorithm="md5")  # type: ignore[arg-type]
