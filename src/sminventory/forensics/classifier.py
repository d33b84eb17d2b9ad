"""
Model Classifier

Multi-signal heuristic classification of a weight file into
(architecture, model type, confidence), plus independent precision detection.

Signals, strongest first:
    1. modelspec.architecture metadata
    2. ss_base_model_version (kohya training runs, always LoRAs)
    3. tensor-name signatures, by explicit priority, size-corroborated
    4. byte-size ranges alone
Directory keywords only ever fill in a type the header could not provide;
they never override a pattern- or metadata-derived type.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .header_reader import GgufInfo, SafetensorsHeader
from .metadata_parser import KEY_BASE_MODEL_VERSION, KEY_MODELSPEC_ARCHITECTURE, KEY_MODELSPEC_PRECISION
from .precision_maps import Precision, precision_from_filename
from .signatures import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    DIRECTORY_KEYWORDS,
    GGUF_ARCHITECTURES,
    GGUF_TEXT_ENCODER_ARCHITECTURES,
    SIGNATURES,
    SIZE_RANGES,
    Architecture,
    ModelType,
    lookup_base_model_version,
    lookup_modelspec_architecture,
    size_ranges_for,
)

logger = logging.getLogger(__name__)


# ============================================================================
# DETECTION SOURCES
# ============================================================================

SOURCE_MODELSPEC = "modelspec"
SOURCE_TRAINING_METADATA = "training_metadata"
SOURCE_TENSOR_PATTERN = "tensor_pattern"
SOURCE_SIZE_HINT = "size_hint"
SOURCE_GGUF_METADATA = "gguf_metadata"
SOURCE_DIRECTORY = "directory"
SOURCE_UNKNOWN = "unknown"

# Sources whose type a directory keyword may replace
_WEAK_SOURCES = (SOURCE_SIZE_HINT, SOURCE_UNKNOWN)

_PATH_SEPARATORS = re.compile(r"[\\/]+")
_KEYWORD_STRIP = re.compile(r"[\s_\-]+")


@dataclass(frozen=True)
class DetectionResult:
    """Classifier verdict for one file."""

    architecture: str
    model_type: str
    confidence: str
    detected_from: str

    @property
    def is_unknown(self) -> bool:
        return self.architecture == Architecture.UNKNOWN and self.model_type == ModelType.UNKNOWN


UNKNOWN_DETECTION = DetectionResult(
    architecture=Architecture.UNKNOWN,
    model_type=ModelType.UNKNOWN,
    confidence=CONFIDENCE_LOW,
    detected_from=SOURCE_UNKNOWN,
)


# ============================================================================
# DIRECTORY KEYWORDS
# ============================================================================

def detect_model_type_from_path(directory: Optional[str]) -> str:
    """
    Derive a model type from directory names.

    Path components are examined deepest first, so ``models/loras/vae-tests``
    is a vae directory. Each component is lowercased with separators removed
    and matched by prefix ("Loras", "text_encoders", "clip_vision" all match).

    Args:
        directory: Containing directory (a file path also works; only the
            directory portion is used when it has a model extension)

    Returns:
        A ModelType value, ``unknown`` if no keyword matches
    """
    if not directory:
        return ModelType.UNKNOWN

    parts: List[str] = [p for p in _PATH_SEPARATORS.split(os.fspath(directory)) if p]
    if parts and os.path.splitext(parts[-1])[1].lower() in (".safetensors", ".ckpt", ".pt", ".pth", ".bin", ".gguf"):
        parts = parts[:-1]

    for part in reversed(parts):
        key = _KEYWORD_STRIP.sub("", part.lower())
        for model_type, prefixes in DIRECTORY_KEYWORDS:
            if any(key.startswith(prefix) for prefix in prefixes):
                return model_type
    return ModelType.UNKNOWN


def _apply_directory(result: DetectionResult, directory: Optional[str]) -> DetectionResult:
    if result.detected_from not in _WEAK_SOURCES and result.model_type != ModelType.UNKNOWN:
        return result

    dir_type = detect_model_type_from_path(directory)
    if dir_type == ModelType.UNKNOWN or dir_type == result.model_type:
        return result

    if result.model_type == ModelType.UNKNOWN and result.detected_from not in _WEAK_SOURCES:
        # Architecture came from a real signal; only the type is filled in
        return DetectionResult(result.architecture, dir_type, result.confidence, result.detected_from)

    # A size-range guess for a different type says nothing about architecture
    return DetectionResult(Architecture.UNKNOWN, dir_type, CONFIDENCE_LOW, SOURCE_DIRECTORY)


# ============================================================================
# HEADER CLASSIFICATION
# ============================================================================

def _detect_from_metadata(header: SafetensorsHeader) -> Optional[DetectionResult]:
    modelspec = header.metadata.get(KEY_MODELSPEC_ARCHITECTURE)
    if modelspec:
        found = lookup_modelspec_architecture(modelspec)
        if found:
            architecture, model_type = found
            return DetectionResult(architecture, model_type, CONFIDENCE_HIGH, SOURCE_MODELSPEC)

    base_version = header.metadata.get(KEY_BASE_MODEL_VERSION)
    if base_version:
        architecture = lookup_base_model_version(base_version)
        if architecture:
            return DetectionResult(architecture, ModelType.LORA, CONFIDENCE_HIGH, SOURCE_TRAINING_METADATA)

    return None


def _detect_from_tensor_names(header: SafetensorsHeader, file_size: Optional[int]) -> Optional[DetectionResult]:
    if not header.tensors:
        return None

    joined = "\n".join(header.tensor_names)
    for sig in SIGNATURES:
        if not sig.matches(joined):
            continue

        confidence = sig.confidence
        if (
            sig.model_type == ModelType.CHECKPOINT
            and confidence != CONFIDENCE_HIGH
            and file_size
            and any(r.contains(file_size) for r in size_ranges_for(ModelType.CHECKPOINT, sig.architecture))
        ):
            confidence = CONFIDENCE_HIGH

        logger.debug(f"Tensor signature {sig.name!r} matched (priority {sig.priority})")
        return DetectionResult(sig.architecture, sig.model_type, confidence, SOURCE_TENSOR_PATTERN)

    return None


def _detect_from_size(file_size: Optional[int]) -> Optional[DetectionResult]:
    if not file_size:
        return None
    for size_range in SIZE_RANGES:
        if size_range.contains(file_size):
            return DetectionResult(size_range.architecture, size_range.model_type, CONFIDENCE_LOW, SOURCE_SIZE_HINT)
    return None


def classify_header(
    header: Optional[SafetensorsHeader],
    file_size: Optional[int] = None,
    directory: Optional[str] = None,
) -> DetectionResult:
    """
    Classify a model from its parsed header, size and location.

    Deterministic: the same header, size and directory always produce the
    same result.

    Args:
        header: Parsed safetensors header, or None if it could not be read
        file_size: File size in bytes, used for corroboration and fallback
        directory: Containing directory, used only to fill an unknown type

    Returns:
        DetectionResult
    """
    result = None
    if header is not None:
        result = _detect_from_metadata(header) or _detect_from_tensor_names(header, file_size)
    if result is None:
        result = _detect_from_size(file_size) or UNKNOWN_DETECTION

    return _apply_directory(result, directory)


def classify_gguf(info: GgufInfo, directory: Optional[str] = None) -> DetectionResult:
    """
    Classify a GGUF container from its ``general.architecture`` field.

    Diffusion conversions (flux, sdxl, ...) are high confidence; the type is
    diffusion_model unless the directory names another loader category.
    Text-encoder conversions classify as clip.
    """
    arch_value = (info.architecture or "").lower()
    dir_type = detect_model_type_from_path(directory)

    if arch_value in GGUF_ARCHITECTURES:
        model_type = dir_type if dir_type != ModelType.UNKNOWN else ModelType.DIFFUSION_MODEL
        return DetectionResult(GGUF_ARCHITECTURES[arch_value], model_type, CONFIDENCE_HIGH, SOURCE_GGUF_METADATA)

    if arch_value in GGUF_TEXT_ENCODER_ARCHITECTURES:
        return DetectionResult(Architecture.UNKNOWN, ModelType.CLIP, CONFIDENCE_MEDIUM, SOURCE_GGUF_METADATA)

    return _apply_directory(UNKNOWN_DETECTION, directory)


# ============================================================================
# PRECISION
# ============================================================================

def detect_precision(filename: str, metadata: Optional[Mapping[str, str]] = None) -> str:
    """
    Detect numeric precision, independently of architecture/type.

    Order: filename markers (fp8/fp16/fp32/bf16, GGUF quant markers), then
    ``modelspec.precision`` metadata, then the ".safetensors implies fp16"
    default, then unknown.

    Args:
        filename: File name (or path)
        metadata: Embedded metadata (MetadataMap or plain dict)

    Returns:
        Precision string
    """
    hinted = precision_from_filename(os.path.basename(filename))
    if hinted:
        return hinted

    if metadata is not None:
        declared = metadata.get(KEY_MODELSPEC_PRECISION)
        if declared and declared.strip():
            return declared.strip().lower()

    if filename.lower().endswith(".safetensors"):
        return Precision.FP16

    return Precision.UNKNOWN
