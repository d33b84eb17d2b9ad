"""
Model Inspector

Per-file forensic analysis: header read, metadata extraction,
classification, precision detection and digest/validation in one pass.

Never raises for a damaged file; a corrupt header or failed validation is
reported on the returned ModelAnalysis so that a batch scan can keep going.
Only a file that does not exist raises.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .classifier import DetectionResult, classify_gguf, classify_header, detect_precision
from .exceptions import CorruptHeaderError, HeaderReadError, ModelFileNotFoundError
from .hashing import ValidationLevel, ValidationReason, ValidationResult, compute_partial_digest, validate_model
from .header_reader import GgufInfo, read_gguf_header, try_read_header
from .metadata_parser import EmbeddedMetadata, extract_embedded_metadata
from .precision_maps import Precision

logger = logging.getLogger(__name__)


# ============================================================================
# INTEGRITY STATUS
# ============================================================================

INTEGRITY_PENDING = "pending"
INTEGRITY_VALID = "valid"
INTEGRITY_CORRUPT = "corrupt"
INTEGRITY_INCOMPLETE = "incomplete"
INTEGRITY_UNKNOWN = "unknown"

SAFETENSORS_EXTENSION = ".safetensors"
GGUF_EXTENSION = ".gguf"

_INCOMPLETE_REASONS = (ValidationReason.TOO_SMALL, ValidationReason.SIZE_MISMATCH)


@dataclass
class ModelAnalysis:
    """Everything learned about one weight file."""

    path: str
    filename: str
    size_bytes: int
    detection: DetectionResult
    precision: str
    integrity_status: str
    embedded: EmbeddedMetadata = field(default_factory=EmbeddedMetadata)
    partial_digest: Optional[str] = None
    full_digest: Optional[str] = None
    header_error: Optional[str] = None
    gguf: Optional[GgufInfo] = None
    validation: Optional[ValidationResult] = None

    def __repr__(self) -> str:
        d = self.detection
        return (
            f"ModelAnalysis({self.filename!r}, {d.architecture}/{d.model_type}/{self.precision}, "
            f"{d.confidence}, {self.integrity_status})"
        )


def _integrity_from(validation: Optional[ValidationResult], header_error: Optional[HeaderReadError]) -> str:
    if isinstance(header_error, CorruptHeaderError):
        return INTEGRITY_CORRUPT
    if validation is None:
        return INTEGRITY_UNKNOWN
    if validation.valid:
        return INTEGRITY_VALID
    if validation.reason in _INCOMPLETE_REASONS:
        return INTEGRITY_INCOMPLETE
    if validation.reason == ValidationReason.DIGEST_MISMATCH:
        return INTEGRITY_CORRUPT
    return INTEGRITY_UNKNOWN


def analyze_model(
    path: str,
    level: ValidationLevel = "standard",
    expected_digest: Optional[str] = None,
    expected_size: Optional[int] = None,
) -> ModelAnalysis:
    """
    Inspect a weight file without loading its tensors.

    Digests computed depend on ``level``: quick computes none, standard the
    partial digest, full both the partial and the full digest.

    Args:
        path: Path to the weight file
        level: Validation level ("quick", "standard" or "full")
        expected_digest: Known digest (from a sidecar) to validate against
        expected_size: Known byte size to validate against (quick level)

    Returns:
        ModelAnalysis

    Raises:
        ModelFileNotFoundError: If the file does not exist
    """
    path = os.fspath(path)
    if not os.path.isfile(path):
        raise ModelFileNotFoundError(path)

    filename = os.path.basename(path)
    directory = os.path.dirname(path)
    size = os.path.getsize(path)
    extension = os.path.splitext(filename)[1].lower()

    embedded = EmbeddedMetadata()
    header_error: Optional[HeaderReadError] = None
    gguf_info: Optional[GgufInfo] = None

    if extension == SAFETENSORS_EXTENSION:
        result = try_read_header(path)
        if result.ok:
            embedded = extract_embedded_metadata(result.header.metadata)
            detection = classify_header(result.header, size, directory)
            precision = detect_precision(filename, result.header.metadata)
        else:
            header_error = result.error
            detection = classify_header(None, size, directory)
            precision = detect_precision(filename)
    elif extension == GGUF_EXTENSION:
        try:
            gguf_info = read_gguf_header(path)
            detection = classify_gguf(gguf_info, directory)
        except HeaderReadError as e:
            logger.warning(f"Cannot read GGUF header: {e}")
            header_error = e
            detection = classify_header(None, size, directory)
        precision = Precision.GGUF
    else:
        # Pickle-based containers (.ckpt/.pt/.pth/.bin) are never unpickled
        detection = classify_header(None, size, directory)
        precision = detect_precision(filename)

    validation = validate_model(path, level, expected_digest=expected_digest, expected_size=expected_size)

    partial_digest = None
    full_digest = None
    if level == "standard":
        partial_digest = validation.digest
    elif level == "full":
        full_digest = validation.digest
        if validation.digest is not None:
            partial_digest = compute_partial_digest(path)

    analysis = ModelAnalysis(
        path=path,
        filename=filename,
        size_bytes=size,
        detection=detection,
        precision=precision,
        integrity_status=_integrity_from(validation, header_error),
        embedded=embedded,
        partial_digest=partial_digest,
        full_digest=full_digest,
        header_error=str(header_error) if header_error else None,
        gguf=gguf_info,
        validation=validation,
    )
    logger.debug(f"Analyzed {analysis!r}")
    return analysis
