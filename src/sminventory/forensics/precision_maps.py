"""
Precision Maps for Model Forensics

Filename markers that declare a weight file's numeric precision, and the
GGUF quantization table used to recognise quantized diffusion models and to
scale size estimates for them.
"""

import re
from typing import Optional, Tuple


class Precision:
    FP32 = "fp32"
    FP16 = "fp16"
    BF16 = "bf16"
    FP8 = "fp8"
    GGUF = "gguf"
    UNKNOWN = "unknown"


# Filename substrings -> precision, checked in order (lowercased filename).
# fp8 first so "flux1-dev-fp8_e4m3fn" is not read as anything wider.
FILENAME_PRECISION_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("fp8", "_f8", "e4m3fn", "e5m2"), Precision.FP8),
    (("fp16", "_f16"), Precision.FP16),
    (("fp32", "_f32"), Precision.FP32),
    (("bf16",), Precision.BF16),
)

# GGUF quantization types to Bits-Per-Weight
# Based on llama.cpp source; EFFECTIVE bits including block scales
GGUF_BPW_MAP = {
    # Full precision
    "F32": 32.0,
    "F16": 16.0,
    "BF16": 16.0,

    # Legacy quantization
    "Q4_0": 4.50,
    "Q4_1": 5.00,
    "Q5_0": 5.50,
    "Q5_1": 6.00,
    "Q8_0": 8.50,

    # K-quants (the usual city96 Flux/Wan conversions)
    "Q2_K": 2.63,
    "Q3_K_S": 3.44,
    "Q3_K_M": 3.91,
    "Q4_K_S": 4.58,
    "Q4_K_M": 4.85,
    "Q4_K": 4.50,
    "Q5_K_S": 5.54,
    "Q5_K_M": 5.69,
    "Q5_K": 5.50,
    "Q6_K": 6.56,
}

# Quant markers bounded by a separator so "q4" inside a word does not count
_GGUF_QUANT_PATTERN = re.compile(
    r"(?:^|[-_.])(" + "|".join(
        sorted((k for k in GGUF_BPW_MAP if k.startswith("Q")), key=len, reverse=True)
    ) + r")(?=$|[-_.])",
    re.IGNORECASE,
)


def get_gguf_bpw(quant_type: str) -> float:
    """
    Get Bits-Per-Weight for a GGUF quantization type.

    Args:
        quant_type: GGUF quantization type string (e.g., "Q4_K_S")

    Returns:
        Bits per weight; 16.0 for unrecognised types (conservative)
    """
    quant_upper = quant_type.upper().strip()

    if quant_upper in GGUF_BPW_MAP:
        return GGUF_BPW_MAP[quant_upper]

    for key, value in GGUF_BPW_MAP.items():
        if key.replace("_", "") == quant_upper.replace("_", ""):
            return value

    return 16.0


def parse_quantization_from_filename(filename: str) -> Tuple[Optional[str], float]:
    """
    Parse a GGUF quantization marker from a filename.

    Args:
        filename: e.g. "flux1-dev-Q4_K_S.gguf"

    Returns:
        Tuple of (quant_type, bpw) or (None, 16.0) if no marker is present
    """
    match = _GGUF_QUANT_PATTERN.search(filename)
    if not match:
        return None, 16.0
    quant_type = match.group(1).upper()
    return quant_type, get_gguf_bpw(quant_type)


def precision_from_filename(filename: str) -> Optional[str]:
    """Precision declared by filename markers, or None if there is none."""
    lower = filename.lower()
    for needles, precision in FILENAME_PRECISION_HINTS:
        if any(n in lower for n in needles):
            return precision

    if lower.endswith(".gguf"):
        return Precision.GGUF
    quant_type, _ = parse_quantization_from_filename(filename)
    if quant_type is not None:
        return Precision.GGUF
    return None
