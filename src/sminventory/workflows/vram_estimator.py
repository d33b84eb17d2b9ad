"""
VRAM Estimator for Diffusion Workflows

Estimates peak GPU memory for a workflow from the models it loads. Each model
contributes (size in GB) x a (type, precision) factor; the total is floored by
what the workflow's architecture needs at minimum, then inflated for
generation-time activations and a peak margin.

Also estimates the download size of models a workflow needs but the
inventory does not have, so missing dependencies still count toward size and
VRAM totals.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..forensics.precision_maps import Precision, parse_quantization_from_filename, precision_from_filename
from ..forensics.signatures import Architecture, ModelType

logger = logging.getLogger(__name__)


# =============================================================================
# ESTIMATION CONSTANTS
# =============================================================================

BYTES_PER_GB = 1024 ** 3
BYTES_PER_MB = 1024 ** 2

# ComfyUI runtime, CUDA context and scratch buffers before any model loads
BASE_OVERHEAD_GB = 1.5

# Activations during sampling
GENERATION_OVERHEAD_FACTOR = 1.3

# Extra margin for the highest point of a run (VAE decode, model swaps)
PEAK_MARGIN_FACTOR = 1.2

# A sum below the architecture floor is raised to this fraction of it
FLOOR_FRACTION = 0.8

# GPU classes checked by estimate_workflow_vram, each with a buffer left free
GPU_CLASSES_GB = (16, 24, 48, 80)
GPU_SAFETY_BUFFER_GB = 2.0

# check_vram_fit: minimum headroom for a "fits" verdict and for a comfortable one
FIT_MIN_MARGIN_GB = 1.0
FIT_COMFORTABLE_MARGIN_GB = 3.0

# Counts above which a workflow gets a warning
MAX_LORAS_BEFORE_WARNING = 3
MAX_CONTROLNETS_BEFORE_WARNING = 2

# Minimum realistic VRAM per architecture
ARCHITECTURE_FLOOR_GB = {
    Architecture.SD15: 4.0,
    Architecture.SDXL: 8.0,
    Architecture.SD3: 10.0,
    Architecture.FLUX: 12.0,
    Architecture.PONY: 8.0,
    Architecture.WAN: 14.0,
    Architecture.SVD: 10.0,
    Architecture.UNKNOWN: 8.0,
}
DEFAULT_FLOOR_GB = ARCHITECTURE_FLOOR_GB[Architecture.UNKNOWN]


def _scaled(factor: float) -> Callable[[float], float]:
    return lambda size_gb: size_gb * factor


def _flat(value_gb: float) -> Callable[[float], float]:
    return lambda size_gb: value_gb


# (type, precision) -> GB of VRAM for a file of size_gb.
# Every type has an "unknown" entry used for precisions it does not list.
_BACKBONE_FACTORS = {
    Precision.FP32: _scaled(1.2),
    Precision.FP16: _scaled(1.1),
    Precision.BF16: _scaled(1.1),
    Precision.FP8: _scaled(0.6),
    Precision.GGUF: _scaled(0.5),
    Precision.UNKNOWN: _scaled(1.1),
}

VRAM_FACTORS: Dict[str, Dict[str, Callable[[float], float]]] = {
    ModelType.CHECKPOINT: _BACKBONE_FACTORS,
    ModelType.DIFFUSION_MODEL: _BACKBONE_FACTORS,
    ModelType.LORA: {
        Precision.FP16: _scaled(0.15),
        Precision.FP32: _scaled(0.2),
        Precision.UNKNOWN: _scaled(0.15),
    },
    ModelType.VAE: {
        Precision.FP16: _flat(0.5),
        Precision.FP32: _flat(1.0),
        Precision.UNKNOWN: _flat(0.5),
    },
    ModelType.CONTROLNET: {
        Precision.FP16: _scaled(1.0),
        Precision.FP32: _scaled(1.2),
        Precision.UNKNOWN: _scaled(1.0),
    },
    ModelType.CLIP: {
        Precision.FP16: _scaled(1.0),
        Precision.FP32: _scaled(1.2),
        Precision.UNKNOWN: _scaled(1.0),
    },
    ModelType.CLIP_VISION: {
        Precision.FP16: _scaled(1.0),
        Precision.FP32: _scaled(1.2),
        Precision.UNKNOWN: _scaled(1.0),
    },
    ModelType.IPADAPTER: {
        Precision.FP16: _scaled(0.8),
        Precision.FP32: _scaled(1.0),
        Precision.UNKNOWN: _scaled(0.8),
    },
    ModelType.UPSCALER: {
        Precision.FP16: _flat(0.2),
        Precision.FP32: _flat(0.3),
        Precision.UNKNOWN: _flat(0.2),
    },
    ModelType.EMBEDDING: {
        Precision.FP16: _flat(0.01),
        Precision.FP32: _flat(0.01),
        Precision.UNKNOWN: _flat(0.01),
    },
}


# =============================================================================
# MISSING-MODEL SIZE CONSTANTS
# =============================================================================

# Typical fp16 download size (bytes) per (type, architecture).
# Architecture.UNKNOWN is the fallback row for each type.
TYPICAL_MODEL_SIZES: Dict[str, Dict[str, int]] = {
    ModelType.CHECKPOINT: {
        Architecture.SD15: 2048 * BYTES_PER_MB,
        Architecture.SDXL: 6617 * BYTES_PER_MB,
        Architecture.PONY: 6617 * BYTES_PER_MB,
        Architecture.SD3: 5760 * BYTES_PER_MB,
        Architecture.FLUX: 16 * BYTES_PER_GB,
        Architecture.SVD: 9 * BYTES_PER_GB,
        Architecture.UNKNOWN: 6 * BYTES_PER_GB,
    },
    ModelType.DIFFUSION_MODEL: {
        Architecture.FLUX: 22 * BYTES_PER_GB,
        Architecture.WAN: 27 * BYTES_PER_GB,
        Architecture.SD3: 4 * BYTES_PER_GB,
        Architecture.UNKNOWN: 10 * BYTES_PER_GB,
    },
    ModelType.LORA: {
        Architecture.SDXL: 220 * BYTES_PER_MB,
        Architecture.PONY: 220 * BYTES_PER_MB,
        Architecture.FLUX: 300 * BYTES_PER_MB,
        Architecture.UNKNOWN: 150 * BYTES_PER_MB,
    },
    ModelType.VAE: {
        Architecture.UNKNOWN: 320 * BYTES_PER_MB,
    },
    ModelType.CONTROLNET: {
        Architecture.SD15: 700 * BYTES_PER_MB,
        Architecture.SDXL: 2400 * BYTES_PER_MB,
        Architecture.FLUX: 3300 * BYTES_PER_MB,
        Architecture.UNKNOWN: 1400 * BYTES_PER_MB,
    },
    ModelType.CLIP: {
        Architecture.UNKNOWN: 1600 * BYTES_PER_MB,
    },
    ModelType.CLIP_VISION: {
        Architecture.UNKNOWN: 1700 * BYTES_PER_MB,
    },
    ModelType.IPADAPTER: {
        Architecture.SD15: 100 * BYTES_PER_MB,
        Architecture.UNKNOWN: 700 * BYTES_PER_MB,
    },
    ModelType.UPSCALER: {
        Architecture.UNKNOWN: 64 * BYTES_PER_MB,
    },
    ModelType.EMBEDDING: {
        Architecture.UNKNOWN: 100 * 1024,
    },
}
DEFAULT_MODEL_SIZE = 2 * BYTES_PER_GB

# Text encoders vary by two orders of magnitude; known names get their own size
TEXT_ENCODER_SIZES: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("t5xxl", "t5-xxl", "umt5"), 9500 * BYTES_PER_MB),
    (("clip_g", "clip-g"), 1350 * BYTES_PER_MB),
    (("clip_l", "clip-l"), 240 * BYTES_PER_MB),
)

# Filename substrings -> architecture, checked in order on the lowercased name
NAME_ARCHITECTURE_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("flux",), Architecture.FLUX),
    (("pony",), Architecture.PONY),
    (("sdxl", "_xl", "-xl", "xl_", "xl-"), Architecture.SDXL),
    (("sd3", "sd_3"), Architecture.SD3),
    (("wan2", "wan_", "wan-"), Architecture.WAN),
    (("svd",), Architecture.SVD),
    (("sd15", "sd1.5", "sd_1.5", "v1-5", "sd-1-5"), Architecture.SD15),
)

# File size relative to fp16
PRECISION_SIZE_FACTORS = {
    Precision.FP32: 2.0,
    Precision.FP16: 1.0,
    Precision.BF16: 1.0,
    Precision.FP8: 0.5,
}


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class VramItem:
    """One model a workflow loads, as the estimator sees it."""
    model_type: str
    precision: str
    size_bytes: int
    architecture: Optional[str] = None


@dataclass
class VramBreakdown:
    model_type: str
    count: int
    vram_gb: float


@dataclass
class VramEstimate:
    """Peak VRAM estimate for a workflow."""

    base_gb: float
    with_overhead_gb: float
    peak_gb: float
    breakdown: List[VramBreakdown] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # GPU class in GB -> whether the peak fits with the safety buffer left free
    fits: Dict[int, bool] = field(default_factory=dict)
    architecture: str = Architecture.UNKNOWN

    def __repr__(self) -> str:
        return (
            f"VramEstimate(peak={self.peak_gb:.1f}GB, base={self.base_gb:.1f}GB, "
            f"with_overhead={self.with_overhead_gb:.1f}GB, arch={self.architecture})"
        )


@dataclass
class VramFit:
    """Verdict of check_vram_fit for one GPU."""
    fits: bool
    margin_gb: float
    recommendation: str


# =============================================================================
# ESTIMATION
# =============================================================================

def _round(value: float) -> float:
    return round(value * 10) / 10


def estimate_model_vram(model_type: str, precision: str, size_bytes: int) -> float:
    """
    Estimate VRAM (GB) one loaded model occupies.

    Unknown model types use the checkpoint factors; precisions a type does not
    list use that type's "unknown" factor.
    """
    size_gb = size_bytes / BYTES_PER_GB
    type_factors = VRAM_FACTORS.get(model_type, VRAM_FACTORS[ModelType.CHECKPOINT])
    factor = type_factors.get(precision, type_factors[Precision.UNKNOWN])
    return factor(size_gb)


def architecture_floor_gb(architecture: Optional[str]) -> float:
    return ARCHITECTURE_FLOOR_GB.get(architecture or Architecture.UNKNOWN, DEFAULT_FLOOR_GB)


def estimate_workflow_vram(items: Iterable[VramItem]) -> VramEstimate:
    """
    Estimate peak VRAM for a set of models loaded together.

    The primary architecture (which sets the floor) comes from the last
    checkpoint or diffusion model item that declares one.

    Args:
        items: Models the workflow loads

    Returns:
        VramEstimate with values rounded to 0.1 GB
    """
    base = BASE_OVERHEAD_GB
    breakdown: Dict[str, List[float]] = {}
    architecture = Architecture.UNKNOWN
    lora_count = 0
    controlnet_count = 0

    for item in items:
        vram = estimate_model_vram(item.model_type, item.precision, item.size_bytes)
        base += vram

        entry = breakdown.setdefault(item.model_type, [0, 0.0])
        entry[0] += 1
        entry[1] += vram

        if item.model_type == ModelType.LORA:
            lora_count += 1
        elif item.model_type == ModelType.CONTROLNET:
            controlnet_count += 1

        if item.model_type in (ModelType.CHECKPOINT, ModelType.DIFFUSION_MODEL) and item.architecture:
            if item.architecture != Architecture.UNKNOWN:
                architecture = item.architecture

    warnings = []
    if lora_count > MAX_LORAS_BEFORE_WARNING:
        warnings.append(f"{lora_count} LoRAs may cause instability or slow generation")
    if controlnet_count > MAX_CONTROLNETS_BEFORE_WARNING:
        warnings.append(f"{controlnet_count} ControlNets will significantly increase VRAM usage")

    floor = architecture_floor_gb(architecture)
    if base < floor:
        base = max(base, floor * FLOOR_FRACTION)

    with_overhead = base * GENERATION_OVERHEAD_FACTOR
    peak = with_overhead * PEAK_MARGIN_FACTOR

    fits = {gb: peak <= gb - GPU_SAFETY_BUFFER_GB for gb in GPU_CLASSES_GB}
    if not fits[16] and not fits[24]:
        warnings.append("This workflow may require a high-VRAM GPU (48GB+)")
    elif not fits[16]:
        warnings.append("This workflow may not fit on a 16GB GPU")

    estimate = VramEstimate(
        base_gb=_round(base),
        with_overhead_gb=_round(with_overhead),
        peak_gb=_round(peak),
        breakdown=[VramBreakdown(t, count, _round(vram)) for t, (count, vram) in breakdown.items()],
        warnings=warnings,
        fits=fits,
        architecture=architecture,
    )
    logger.debug(f"Estimated {estimate!r}")
    return estimate


def recommend_precision(target_vram_gb: float, architecture: Optional[str] = None) -> str:
    """
    Precision to download for a GPU with target_vram_gb of memory.

    fp16 with at least 1.5x the architecture floor, fp8 down to the floor
    itself, GGUF quantizations below it.
    """
    floor = architecture_floor_gb(architecture)
    if target_vram_gb >= floor * 1.5:
        return Precision.FP16
    if target_vram_gb >= floor:
        return Precision.FP8
    return Precision.GGUF


def check_vram_fit(estimate: VramEstimate, available_vram_gb: float) -> VramFit:
    """Compare an estimate against one GPU and recommend what to change."""
    margin = available_vram_gb - estimate.peak_gb
    fits = margin >= FIT_MIN_MARGIN_GB

    if not fits:
        if margin > -2:
            recommendation = "Consider using fp8 precision or removing some LoRAs"
        elif margin > -5:
            recommendation = "Consider using GGUF quantized models or a cloud GPU"
        else:
            recommendation = "This workflow requires significantly more VRAM - use cloud deployment"
    elif margin < FIT_COMFORTABLE_MARGIN_GB:
        recommendation = "Should fit but may be tight - close other GPU applications"
    else:
        recommendation = "Good fit with comfortable margin"

    return VramFit(fits=fits, margin_gb=_round(margin), recommendation=recommendation)


# =============================================================================
# MISSING-MODEL SIZES
# =============================================================================

def architecture_from_name(model_name: str) -> Optional[str]:
    """Architecture suggested by a model filename, or None."""
    lower = os.path.basename(model_name.replace("\\", "/")).lower()
    for needles, architecture in NAME_ARCHITECTURE_HINTS:
        if any(n in lower for n in needles):
            return architecture
    return None


def estimate_missing_model_size(model_type: str, model_name: str) -> int:
    """
    Estimate the download size (bytes) of a model that is not in the inventory.

    Starts from the typical fp16 size for the type (refined by an
    architecture hint in the name when the type has per-architecture sizes),
    then scales by the precision the name declares. GGUF names scale by
    their quantization's bits per weight.

    Args:
        model_type: Declared model type (checkpoint, lora, ...)
        model_name: Model name as written in the workflow

    Returns:
        Estimated size in bytes, never zero
    """
    lower = model_name.lower()
    sizes = TYPICAL_MODEL_SIZES.get(model_type)
    if sizes is None:
        size = DEFAULT_MODEL_SIZE
    else:
        architecture = architecture_from_name(model_name)
        size = sizes.get(architecture, sizes[Architecture.UNKNOWN])

    if model_type == ModelType.CLIP:
        for needles, encoder_size in TEXT_ENCODER_SIZES:
            if any(n in lower for n in needles):
                size = encoder_size
                break

    precision = precision_from_filename(model_name)
    if precision == Precision.GGUF:
        _, bpw = parse_quantization_from_filename(os.path.basename(model_name))
        size = size * bpw / 16.0
    elif precision in PRECISION_SIZE_FACTORS:
        size = size * PRECISION_SIZE_FACTORS[precision]

    return max(int(size), 1)


def format_file_size(size_bytes: Optional[int]) -> str:
    """Human-readable size, e.g. 6.5GB."""
    size = float(size_bytes or 0)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}PB"
