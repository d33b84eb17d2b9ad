"""Tests for content digests and validation levels"""

import hashlib
import os

import pytest

from sminventory.forensics import (
    ModelFileNotFoundError,
    ValidationMismatchError,
    ValidationReason,
    compute_full_digest,
    compute_partial_digest,
    full_validate,
    quick_validate,
    standard_validate,
    validate_model,
)
from sminventory.forensics.hashing import PARTIAL_DIGEST_WINDOW


@pytest.fixture
def data_file(tmp_path):
    def _make(name, size, seed=1):
        path = tmp_path / name
        block = bytes((i * seed) % 251 for i in range(4096))
        path.write_bytes((block * (size // len(block) + 1))[:size])
        return str(path)

    return _make


class TestFullDigest:
    """Test the canonical identity digest."""

    def test_matches_hashlib_uppercase(self, data_file):
        path = data_file("a.bin", 3 * 1024 * 1024 + 17)
        with open(path, "rb") as f:
            expected = hashlib.sha256(f.read()).hexdigest().upper()

        assert compute_full_digest(path) == expected

    def test_stable_across_runs_and_renames(self, data_file, tmp_path):
        """Identity never depends on the file name."""
        path = data_file("original.safetensors", 200_000)
        first = compute_full_digest(path)

        renamed = str(tmp_path / "renamed.safetensors")
        os.rename(path, renamed)

        assert compute_full_digest(renamed) == first
        assert compute_full_digest(renamed) == first

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelFileNotFoundError):
            compute_full_digest(str(tmp_path / "missing.bin"))


class TestPartialDigest:
    """Test the bounded-window digest."""

    def test_small_file_definition(self, data_file):
        """Below the window the input is the whole file plus its length."""
        path = data_file("small.bin", 5000)
        with open(path, "rb") as f:
            content = f.read()

        expected = hashlib.sha256(content + b"5000").hexdigest().upper()

        assert compute_partial_digest(path) == expected

    def test_large_file_uses_head_and_tail(self, data_file):
        size = 2 * PARTIAL_DIGEST_WINDOW + 12345
        path = data_file("large.bin", size)
        with open(path, "rb") as f:
            content = f.read()

        expected = hashlib.sha256(
            content[:PARTIAL_DIGEST_WINDOW] + content[-PARTIAL_DIGEST_WINDOW:] + str(size).encode()
        ).hexdigest().upper()

        assert compute_partial_digest(path) == expected

    def test_truncation_by_one_byte_changes_digest(self, data_file):
        """The length is mixed in, so truncation always changes the digest."""
        path = data_file("model.bin", PARTIAL_DIGEST_WINDOW + 4096)
        before = compute_partial_digest(path)

        with open(path, "r+b") as f:
            f.truncate(os.path.getsize(path) - 1)

        assert compute_partial_digest(path) != before

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelFileNotFoundError):
            compute_partial_digest(str(tmp_path / "missing.bin"))


class TestValidation:
    """Test the three validation levels."""

    def test_quick_rejects_tiny_files(self, data_file):
        result = quick_validate(data_file("tiny.bin", 100))

        assert not result
        assert result.reason == ValidationReason.TOO_SMALL
        assert result.actual == "100"

    def test_quick_size_mismatch(self, data_file):
        result = quick_validate(data_file("a.bin", 4096), expected_size=8192)

        assert result.reason == ValidationReason.SIZE_MISMATCH
        assert (result.expected, result.actual) == ("8192", "4096")

    def test_quick_not_found(self, tmp_path):
        assert quick_validate(str(tmp_path / "nope.bin")).reason == ValidationReason.NOT_FOUND

    def test_standard_digest_match_is_case_insensitive(self, data_file):
        path = data_file("a.bin", 4096)
        digest = compute_partial_digest(path)

        result = standard_validate(path, expected_digest=digest.lower())

        assert result.valid
        assert result.digest == digest

    def test_full_mismatch_carries_expected_and_actual(self, data_file):
        path = data_file("a.bin", 4096)

        result = full_validate(path, expected_digest="ab" * 32)

        assert not result.valid
        assert result.reason == ValidationReason.DIGEST_MISMATCH
        assert result.expected == "AB" * 32
        assert result.actual == compute_full_digest(path)

    def test_raise_for_mismatch(self, data_file):
        path = data_file("a.bin", 4096)

        with pytest.raises(ValidationMismatchError) as exc_info:
            full_validate(path, expected_digest="00" * 32).raise_for_mismatch()

        assert exc_info.value.level == "full"
        assert exc_info.value.expected == "00" * 32

    def test_raise_for_mismatch_passes_valid_results(self, data_file):
        result = validate_model(data_file("a.bin", 4096), "quick")
        assert result.raise_for_mismatch() is result

    def test_dispatcher_rejects_unknown_level(self, data_file):
        with pytest.raises(ValueError):
            validate_model(data_file("a.bin", 4096), "paranoid")

    def test_standard_without_expected_only_computes(self, data_file):
        path = data_file("a.bin", 4096)
        result = validate_model(path, "standard")
        assert result.valid
        assert result.digest == compute_partial_digest(path)
