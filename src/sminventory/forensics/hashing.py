"""
Content Identity & Integrity Engine

Full and partial SHA-256 digests of weight files, and three validation levels
built on them:

    quick     existence, exact size, and a minimum plausible size
    standard  partial digest (first + last 10 MiB + length)
    full      full digest

Digests are uppercase hex, the form remote catalogs index by. Comparisons
against caller-supplied digests are case-insensitive.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from .exceptions import ModelFileNotFoundError, ValidationMismatchError

logger = logging.getLogger(__name__)

ValidationLevel = Literal["quick", "standard", "full"]


# ============================================================================
# CONSTANTS
# ============================================================================

FULL_DIGEST_CHUNK_SIZE = 1024 * 1024          # 1 MiB streaming reads
PARTIAL_DIGEST_WINDOW = 10 * 1024 * 1024      # 10 MiB head/tail windows
MIN_PLAUSIBLE_MODEL_SIZE = 1024               # smaller is an aborted download


def _require_file(path: str) -> int:
    if not os.path.isfile(path):
        raise ModelFileNotFoundError(path)
    return os.path.getsize(path)


def compute_full_digest(path: str) -> str:
    """
    Streaming SHA-256 over the entire file.

    Args:
        path: Path to the file

    Returns:
        Uppercase hex digest

    Raises:
        ModelFileNotFoundError: If the file does not exist
    """
    path = os.fspath(path)
    _require_file(path)

    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(FULL_DIGEST_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest().upper()


def compute_partial_digest(path: str) -> str:
    """
    SHA-256 over a bounded window of the file plus its length.

    Input is the first 10 MiB, then the last 10 MiB when the file is larger
    than 20 MiB (or the bytes beyond the first window when it is between 10
    and 20 MiB), then the decimal byte length. Mixing in the length makes any
    truncation change the digest even when the windows are unaffected.

    Args:
        path: Path to the file

    Returns:
        Uppercase hex digest

    Raises:
        ModelFileNotFoundError: If the file does not exist
    """
    path = os.fspath(path)
    size = _require_file(path)

    digest = hashlib.sha256()
    with open(path, "rb") as f:
        digest.update(f.read(PARTIAL_DIGEST_WINDOW))

        if size > PARTIAL_DIGEST_WINDOW * 2:
            f.seek(size - PARTIAL_DIGEST_WINDOW)
            digest.update(f.read(PARTIAL_DIGEST_WINDOW))
        elif size > PARTIAL_DIGEST_WINDOW:
            f.seek(PARTIAL_DIGEST_WINDOW)
            digest.update(f.read(size - PARTIAL_DIGEST_WINDOW))

    digest.update(str(size).encode("ascii"))
    return digest.hexdigest().upper()


def digests_match(expected: Optional[str], actual: Optional[str]) -> bool:
    if expected is None or actual is None:
        return False
    return expected.strip().upper() == actual.strip().upper()


# ============================================================================
# VALIDATION RESULT
# ============================================================================

class ValidationReason(Enum):
    """Reason for a validation result."""

    # Failures (valid=False)
    NOT_FOUND = "File not found"
    SIZE_MISMATCH = "Size does not match the expected size"
    TOO_SMALL = "File too small - likely incomplete download"
    DIGEST_MISMATCH = "Digest does not match the expected digest"
    READ_FAILED = "File could not be read"

    # Success (valid=True)
    OK = "File passed validation"

    def __str__(self):
        return self.value


@dataclass
class ValidationResult:
    """
    Outcome of a validation pass.

    Every failure carries a structured reason and, where applicable, the
    expected and actual values that disagreed.
    """

    valid: bool
    level: str
    reason: ValidationReason
    path: str = ""
    expected: Optional[str] = None
    actual: Optional[str] = None
    size: Optional[int] = None
    digest: Optional[str] = None

    def raise_for_mismatch(self) -> "ValidationResult":
        """Raise ValidationMismatchError if invalid; otherwise return self."""
        if not self.valid:
            raise ValidationMismatchError(
                path=self.path,
                level=self.level,
                reason=self.reason.value,
                expected=self.expected,
                actual=self.actual,
            )
        return self

    def __bool__(self) -> bool:
        return self.valid

    def __repr__(self) -> str:
        status = "✓" if self.valid else "✗"
        return f"ValidationResult({status} {self.level}: {self.reason.name})"


# ============================================================================
# VALIDATION LEVELS
# ============================================================================

def quick_validate(path: str, expected_size: Optional[int] = None) -> ValidationResult:
    """
    Existence, exact size match (when an expected size is given) and a
    minimum plausible size.
    """
    path = os.fspath(path)
    if not os.path.isfile(path):
        return ValidationResult(valid=False, level="quick", reason=ValidationReason.NOT_FOUND, path=path, size=0)

    size = os.path.getsize(path)

    if expected_size is not None and size != expected_size:
        return ValidationResult(
            valid=False, level="quick", reason=ValidationReason.SIZE_MISMATCH, path=path,
            expected=str(expected_size), actual=str(size), size=size,
        )

    if size < MIN_PLAUSIBLE_MODEL_SIZE:
        return ValidationResult(
            valid=False, level="quick", reason=ValidationReason.TOO_SMALL, path=path,
            expected=f">= {MIN_PLAUSIBLE_MODEL_SIZE}", actual=str(size), size=size,
        )

    return ValidationResult(valid=True, level="quick", reason=ValidationReason.OK, path=path, size=size)


def _digest_validate(path: str, level: str, expected_digest: Optional[str]) -> ValidationResult:
    path = os.fspath(path)
    compute = compute_partial_digest if level == "standard" else compute_full_digest

    try:
        digest = compute(path)
    except ModelFileNotFoundError:
        return ValidationResult(valid=False, level=level, reason=ValidationReason.NOT_FOUND, path=path, size=0)
    except OSError as e:
        logger.warning(f"Cannot compute {level} digest for {path}: {e}")
        return ValidationResult(
            valid=False, level=level, reason=ValidationReason.READ_FAILED, path=path, actual=str(e),
        )

    size = os.path.getsize(path)
    if expected_digest and not digests_match(expected_digest, digest):
        return ValidationResult(
            valid=False, level=level, reason=ValidationReason.DIGEST_MISMATCH, path=path,
            expected=expected_digest.upper(), actual=digest, size=size, digest=digest,
        )

    return ValidationResult(valid=True, level=level, reason=ValidationReason.OK, path=path, size=size, digest=digest)


def standard_validate(path: str, expected_digest: Optional[str] = None) -> ValidationResult:
    """Partial-digest validation; without an expected digest it only computes one."""
    return _digest_validate(path, "standard", expected_digest)


def full_validate(path: str, expected_digest: Optional[str] = None) -> ValidationResult:
    """Full-digest validation; without an expected digest it only computes one."""
    return _digest_validate(path, "full", expected_digest)


def validate_model(
    path: str,
    level: ValidationLevel = "standard",
    expected_digest: Optional[str] = None,
    expected_size: Optional[int] = None,
) -> ValidationResult:
    """
    Validate a model file at the requested level.

    Args:
        path: Path to the model file
        level: "quick", "standard" or "full"
        expected_digest: Digest to compare against (standard/full)
        expected_size: Exact byte size to compare against (quick)

    Returns:
        ValidationResult

    Raises:
        ValueError: If level is not one of the three known levels
    """
    if level == "quick":
        return quick_validate(path, expected_size)
    if level == "standard":
        return standard_validate(path, expected_digest)
    if level == "full":
        return full_validate(path, expected_digest)
    raise ValueError(f"Unknown validation level: {level!r} (expected quick, standard or full)")
