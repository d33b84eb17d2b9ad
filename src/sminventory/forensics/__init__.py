"""
Model file forensics.

Reads container headers, classifies architecture/type/precision and computes
content digests, without ever loading tensor payloads.
"""

from .classifier import (
    DetectionResult,
    classify_gguf,
    classify_header,
    detect_model_type_from_path,
    detect_precision,
)
from .exceptions import (
    CatalogLookupError,
    CorruptHeaderError,
    HeaderNotFoundError,
    HeaderReadError,
    InventoryError,
    ModelFileNotFoundError,
    ResolutionAmbiguousError,
    ValidationMismatchError,
    WorkflowParseError,
)
from .hashing import (
    ValidationReason,
    ValidationResult,
    compute_full_digest,
    compute_partial_digest,
    full_validate,
    quick_validate,
    standard_validate,
    validate_model,
)
from .header_reader import (
    GgufInfo,
    HeaderReadResult,
    SafetensorsHeader,
    TensorInfo,
    read_gguf_header,
    read_safetensors_header,
    try_read_header,
)
from .metadata_parser import EmbeddedMetadata, MetadataMap, extract_embedded_metadata
from .model_inspector import ModelAnalysis, analyze_model
from .signatures import SIGNATURES, Architecture, ClassificationSignature, ModelType

__all__ = [
    # Primary API
    "analyze_model",
    "ModelAnalysis",
    "read_safetensors_header",
    "try_read_header",
    "read_gguf_header",
    "extract_embedded_metadata",
    "classify_header",
    "classify_gguf",
    "detect_model_type_from_path",
    "detect_precision",
    "compute_full_digest",
    "compute_partial_digest",
    "validate_model",
    "quick_validate",
    "standard_validate",
    "full_validate",

    # Types
    "SafetensorsHeader",
    "TensorInfo",
    "HeaderReadResult",
    "GgufInfo",
    "MetadataMap",
    "EmbeddedMetadata",
    "DetectionResult",
    "ValidationResult",
    "ValidationReason",
    "ClassificationSignature",
    "SIGNATURES",
    "Architecture",
    "ModelType",

    # Exceptions
    "InventoryError",
    "HeaderReadError",
    "HeaderNotFoundError",
    "CorruptHeaderError",
    "ModelFileNotFoundError",
    "ValidationMismatchError",
    "WorkflowParseError",
    "ResolutionAmbiguousError",
    "CatalogLookupError",
]
