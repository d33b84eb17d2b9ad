"""
Classification Tables

Fixed reference data for architecture/type detection:
    - tensor-name signatures with explicit priorities
    - byte-size ranges per (model type, architecture)
    - metadata value lookups (modelspec.architecture, ss_base_model_version)
    - directory keywords for model-type fallback
    - GGUF general.architecture values

Everything here is built once at import time as immutable tuples. The
signature table is sorted by priority rather than relying on list position:
a structural superset (e.g. the SD1.5 UNet layout, which SDXL checkpoints
also contain) must carry a lower priority than the more specific signature.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


# =============================================================================
# VOCABULARY
# =============================================================================

class Architecture:
    """Architecture family identifiers."""
    SD15 = "SD15"
    SDXL = "SDXL"
    SD3 = "SD3"
    FLUX = "Flux"
    PONY = "Pony"
    WAN = "Wan"
    SVD = "SVD"
    UNKNOWN = "unknown"


class ModelType:
    """Model type identifiers (also the ComfyUI loader categories)."""
    CHECKPOINT = "checkpoint"
    DIFFUSION_MODEL = "diffusion_model"
    LORA = "lora"
    VAE = "vae"
    CONTROLNET = "controlnet"
    CLIP = "clip"
    CLIP_VISION = "clip_vision"
    IPADAPTER = "ipadapter"
    UPSCALER = "upscaler"
    EMBEDDING = "embedding"
    UNKNOWN = "unknown"


CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"

# Architectures that share weights/adapters (Pony is an SDXL fine-tune)
ARCHITECTURE_FAMILIES = {
    Architecture.PONY: Architecture.SDXL,
}


# =============================================================================
# TENSOR-NAME SIGNATURES
# =============================================================================

@dataclass(frozen=True)
class ClassificationSignature:
    """A set of alternative tensor-name patterns that identify a model."""

    name: str
    priority: int
    patterns: Tuple[Pattern[str], ...]
    architecture: str
    model_type: str
    confidence: str

    def matches(self, joined_names: str) -> bool:
        """True if any pattern is found in the newline-joined tensor names."""
        return any(p.search(joined_names) for p in self.patterns)


def _signature(name: str, priority: int, patterns: Tuple[str, ...], architecture: str,
               model_type: str, confidence: str) -> ClassificationSignature:
    return ClassificationSignature(
        name=name,
        priority=priority,
        patterns=tuple(re.compile(p, re.MULTILINE) for p in patterns),
        architecture=architecture,
        model_type=model_type,
        confidence=confidence,
    )


# Higher priority is evaluated first. Dual-stream transformer markers (Flux,
# SD3) outrank UNet markers; SDXL outranks SD1.5 because the SD1.5 UNet key
# layout is a subset of SDXL's.
_SIGNATURE_DEFINITIONS = (
    # === Flux ===
    _signature("flux_checkpoint", 100,
               (r"double_blocks\.0\.", r"single_blocks\.0\.", r"transformer_blocks.*img_attn"),
               Architecture.FLUX, ModelType.CHECKPOINT, CONFIDENCE_HIGH),
    _signature("flux_lora", 95,
               (r"lora.*transformer\.single_transformer_blocks", r"lora.*double_blocks",
                r"lora_unet_double_blocks_", r"lora_unet_single_blocks_"),
               Architecture.FLUX, ModelType.LORA, CONFIDENCE_HIGH),

    # === SD3 ===
    _signature("sd3_checkpoint", 90,
               (r"model\.diffusion_model.*joint_blocks", r"joint_transformer_blocks"),
               Architecture.SD3, ModelType.CHECKPOINT, CONFIDENCE_HIGH),

    # === Wan video ===
    _signature("wan_diffusion", 85,
               (r"^(model\.diffusion_model\.)?blocks\.\d+\.cross_attn\.k_img",
                r"^(model\.diffusion_model\.)?blocks\.\d+\.self_attn\.norm_q",
                r"wan.*temporal"),
               Architecture.WAN, ModelType.DIFFUSION_MODEL, CONFIDENCE_HIGH),

    # === SDXL ===
    _signature("sdxl_lora", 80,
               (r"lora_te2_", r"lora_unet.*_1280_"),
               Architecture.SDXL, ModelType.LORA, CONFIDENCE_HIGH),
    _signature("sdxl_controlnet", 78,
               (r"controlnet_cond_embedding.*1280", r"control_model.*_1280"),
               Architecture.SDXL, ModelType.CONTROLNET, CONFIDENCE_HIGH),
    _signature("sdxl_checkpoint", 70,
               (r"conditioner\.embedders\.1\.",),
               Architecture.SDXL, ModelType.CHECKPOINT, CONFIDENCE_MEDIUM),

    # === SD 1.5 ===
    _signature("sd15_lora", 60,
               (r"lora_unet_down_blocks_0", r"lora_te_"),
               Architecture.SD15, ModelType.LORA, CONFIDENCE_MEDIUM),
    _signature("sd15_controlnet", 58,
               (r"control_model\.input_blocks", r"control_model\.zero_convs"),
               Architecture.SD15, ModelType.CONTROLNET, CONFIDENCE_MEDIUM),

    # === Stable Video Diffusion ===
    _signature("svd_diffusion", 55,
               (r"temporal_transformer", r"svd_", r"temporal_res_block", r"time_mixer"),
               Architecture.SVD, ModelType.DIFFUSION_MODEL, CONFIDENCE_MEDIUM),

    _signature("sd15_checkpoint", 50,
               (r"model\.diffusion_model\.input_blocks\.0\.0\.weight", r"cond_stage_model\.transformer"),
               Architecture.SD15, ModelType.CHECKPOINT, CONFIDENCE_LOW),

    # === Architecture-agnostic components ===
    _signature("vae", 40,
               (r"first_stage_model\.encoder", r"first_stage_model\.decoder",
                r"^encoder\.down\.\d+\.block", r"^decoder\.up\.\d+\.block"),
               Architecture.UNKNOWN, ModelType.VAE, CONFIDENCE_HIGH),
    _signature("clip", 30,
               (r"text_model\.encoder", r"clip_l", r"clip_g", r"^encoder\.block\.\d+\.layer"),
               Architecture.UNKNOWN, ModelType.CLIP, CONFIDENCE_MEDIUM),
)

SIGNATURES: Tuple[ClassificationSignature, ...] = tuple(
    sorted(_SIGNATURE_DEFINITIONS, key=lambda s: s.priority, reverse=True)
)


# =============================================================================
# SIZE RANGES
# =============================================================================

@dataclass(frozen=True)
class SizeRange:
    """Plausible byte-size range for one (model type, architecture)."""

    model_type: str
    architecture: str
    min_bytes: float
    max_bytes: float

    def contains(self, size: int) -> bool:
        return self.min_bytes <= size <= self.max_bytes


# Evaluated in order for size-only detection; overlapping ranges resolve to
# the first entry.
SIZE_RANGES: Tuple[SizeRange, ...] = (
    SizeRange(ModelType.CHECKPOINT, Architecture.SD15, 1.5e9, 3e9),      # ~2GB
    SizeRange(ModelType.CHECKPOINT, Architecture.SDXL, 5e9, 8e9),        # ~6.5GB
    SizeRange(ModelType.CHECKPOINT, Architecture.FLUX, 10e9, 30e9),      # ~12-24GB
    SizeRange(ModelType.CHECKPOINT, Architecture.SD3, 4e9, 6e9),         # ~5GB SD3 Medium
    SizeRange(ModelType.LORA, Architecture.SD15, 1e6, 200e6),            # ~1-150MB
    SizeRange(ModelType.LORA, Architecture.SDXL, 200e6, 800e6),          # ~200-700MB
    SizeRange(ModelType.LORA, Architecture.FLUX, 100e6, 500e6),
)


def size_ranges_for(model_type: str, architecture: Optional[str] = None) -> Tuple[SizeRange, ...]:
    return tuple(
        r for r in SIZE_RANGES
        if r.model_type == model_type and (architecture is None or r.architecture == architecture)
    )


# =============================================================================
# METADATA LOOKUPS
# =============================================================================

# modelspec.architecture substrings -> (architecture, model type); first match wins
MODELSPEC_ARCHITECTURES: Tuple[Tuple[Tuple[str, ...], str, str], ...] = (
    (("flux",), Architecture.FLUX, ModelType.CHECKPOINT),
    (("sd3", "stable-diffusion-3"), Architecture.SD3, ModelType.CHECKPOINT),
    (("sdxl", "stable-diffusion-xl"), Architecture.SDXL, ModelType.CHECKPOINT),
    (("sd-1", "stable-diffusion-v1"), Architecture.SD15, ModelType.CHECKPOINT),
)

# ss_base_model_version substrings -> architecture; first match wins
BASE_MODEL_VERSIONS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("flux",), Architecture.FLUX),
    (("pony",), Architecture.PONY),
    (("sdxl", "xl"), Architecture.SDXL),
    (("sd3",), Architecture.SD3),
    (("v1", "1.5"), Architecture.SD15),
)

# GGUF general.architecture values (city96 ComfyUI-GGUF conversions)
GGUF_ARCHITECTURES = {
    "flux": Architecture.FLUX,
    "sd1": Architecture.SD15,
    "sdxl": Architecture.SDXL,
    "sd3": Architecture.SD3,
    "wan": Architecture.WAN,
}

# GGUF conversions of text encoders carry the LLM-style architecture name
GGUF_TEXT_ENCODER_ARCHITECTURES = ("t5", "t5encoder", "llama", "clip")

# modelspec.architecture may end in "/<component>", e.g. "stable-diffusion-xl-v1-base/lora"
MODELSPEC_COMPONENT_TYPES = {
    "lora": ModelType.LORA,
    "lycoris": ModelType.LORA,
    "controlnet": ModelType.CONTROLNET,
    "vae": ModelType.VAE,
    "textual-inversion": ModelType.EMBEDDING,
}


def lookup_modelspec_architecture(value: str) -> Optional[Tuple[str, str]]:
    lower = value.lower()
    for needles, architecture, model_type in MODELSPEC_ARCHITECTURES:
        if any(n in lower for n in needles):
            if "/" in lower:
                component = lower.rsplit("/", 1)[1].strip()
                model_type = MODELSPEC_COMPONENT_TYPES.get(component, model_type)
            return architecture, model_type
    return None


def lookup_base_model_version(value: str) -> Optional[str]:
    lower = value.lower()
    for needles, architecture in BASE_MODEL_VERSIONS:
        if any(n in lower for n in needles):
            return architecture
    return None


# =============================================================================
# DIRECTORY KEYWORDS
# =============================================================================

# Directory-name prefixes (lowercased, with "_" and "-" removed) -> model type.
# clip_vision precedes clip so "ClipVision" is not read as a text encoder.
DIRECTORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (ModelType.LORA, ("lora", "lycori")),
    (ModelType.VAE, ("vae",)),
    (ModelType.CONTROLNET, ("controlnet", "t2iadapter")),
    (ModelType.CLIP_VISION, ("clipvision",)),
    (ModelType.CLIP, ("clip", "textencoder")),
    (ModelType.EMBEDDING, ("embedding",)),
    (ModelType.IPADAPTER, ("ipadapter",)),
    (ModelType.UPSCALER, ("esrgan", "realesrgan", "swinir", "upscalemodel")),
    (ModelType.DIFFUSION_MODEL, ("diffusionmodel", "unet")),
    (ModelType.CHECKPOINT, ("checkpoint", "stablediffusion")),
)
