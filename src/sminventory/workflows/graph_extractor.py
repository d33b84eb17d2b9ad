"""
Workflow Graph Extractor

Pulls model dependencies out of a ComfyUI workflow document. Both layouts
ComfyUI writes are understood:

- UI export:  {"nodes": [{"id", "type", "widgets_values": [...], "inputs": [...]}], ...}
- API prompt: {"<node id>": {"class_type", "inputs": {...}}, ...}

Only loader nodes listed in NODE_MODEL_MAP produce dependencies. A loader
whose value is unusable is reported as an ExtractionSkipped warning and the
rest of the graph is still extracted; only a document with no node
collection at all raises WorkflowParseError.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..forensics.exceptions import WorkflowParseError
from ..forensics.signatures import ModelType

logger = logging.getLogger(__name__)


# ============================================================================
# LOADER NODE TABLE
# ============================================================================

@dataclass(frozen=True)
class NodeModelSlot:
    """Where a loader node keeps its model name(s)."""

    model_type: str
    fields: Tuple[str, ...]
    widget_index: Optional[int] = 0


NODE_MODEL_MAP: Dict[str, NodeModelSlot] = {
    # Checkpoints
    "CheckpointLoaderSimple": NodeModelSlot(ModelType.CHECKPOINT, ("ckpt_name",)),
    "CheckpointLoader": NodeModelSlot(ModelType.CHECKPOINT, ("ckpt_name",), widget_index=1),
    "ImageOnlyCheckpointLoader": NodeModelSlot(ModelType.CHECKPOINT, ("ckpt_name",)),
    "unCLIPCheckpointLoader": NodeModelSlot(ModelType.CHECKPOINT, ("ckpt_name",)),
    "UNETLoader": NodeModelSlot(ModelType.DIFFUSION_MODEL, ("unet_name",)),
    "UnetLoaderGGUF": NodeModelSlot(ModelType.DIFFUSION_MODEL, ("unet_name",)),

    # LoRA
    "LoraLoader": NodeModelSlot(ModelType.LORA, ("lora_name",)),
    "LoraLoaderModelOnly": NodeModelSlot(ModelType.LORA, ("lora_name",)),

    # VAE
    "VAELoader": NodeModelSlot(ModelType.VAE, ("vae_name",)),

    # ControlNet (ControlNetApply takes a linked model; only a literal name counts)
    "ControlNetLoader": NodeModelSlot(ModelType.CONTROLNET, ("control_net_name",)),
    "DiffControlNetLoader": NodeModelSlot(ModelType.CONTROLNET, ("control_net_name",)),
    "ControlNetApply": NodeModelSlot(ModelType.CONTROLNET, ("control_net_name",), widget_index=None),

    # Text encoders
    "CLIPLoader": NodeModelSlot(ModelType.CLIP, ("clip_name",)),
    "CLIPLoaderGGUF": NodeModelSlot(ModelType.CLIP, ("clip_name",)),
    "DualCLIPLoader": NodeModelSlot(ModelType.CLIP, ("clip_name1", "clip_name2")),
    "DualCLIPLoaderGGUF": NodeModelSlot(ModelType.CLIP, ("clip_name1", "clip_name2")),
    "TripleCLIPLoader": NodeModelSlot(ModelType.CLIP, ("clip_name1", "clip_name2", "clip_name3")),
    "CLIPVisionLoader": NodeModelSlot(ModelType.CLIP_VISION, ("clip_name",)),

    # Upscale
    "UpscaleModelLoader": NodeModelSlot(ModelType.UPSCALER, ("model_name",)),

    # IP Adapter
    "IPAdapterModelLoader": NodeModelSlot(ModelType.IPADAPTER, ("ipadapter_file",)),

    # Wan / video
    "DownloadAndLoadWanModel": NodeModelSlot(ModelType.DIFFUSION_MODEL, ("model",)),

    # Embeddings
    "EmbeddingLoader": NodeModelSlot(ModelType.EMBEDDING, ("embedding_name",)),
}


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class DependencyDraft:
    """A model dependency as declared by one node, before resolution."""

    node_id: Optional[str]
    node_type: str
    model_type: str
    model_name: str


@dataclass(frozen=True)
class ExtractionSkipped:
    """A recognized loader slot whose value could not be used."""

    node_id: Optional[str]
    node_type: str
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.node_type} (node {self.node_id}) {self.field}: {self.reason}"


@dataclass
class ExtractionResult:
    dependencies: List[DependencyDraft] = field(default_factory=list)
    warnings: List[ExtractionSkipped] = field(default_factory=list)


# ============================================================================
# DOCUMENT NORMALIZATION
# ============================================================================

@dataclass
class _Node:
    id: Optional[str]
    type: str
    widgets_values: Any
    inputs: Any


def _ui_nodes(raw_nodes: Any, source: str) -> List[_Node]:
    if not isinstance(raw_nodes, list):
        raise WorkflowParseError(f"'{source}' is not a list")

    nodes = []
    for raw in raw_nodes:
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            logger.debug(f"Skipping node without a type in {source}")
            continue
        node_id = raw.get("id")
        nodes.append(_Node(
            id=str(node_id) if node_id is not None else None,
            type=raw["type"],
            widgets_values=raw.get("widgets_values"),
            inputs=raw.get("inputs"),
        ))
    return nodes


def iter_nodes(document: Any) -> List[_Node]:
    """
    Normalize either workflow layout into a flat node list.

    Raises:
        WorkflowParseError: If the document is not an object or has no nodes
    """
    if not isinstance(document, dict):
        raise WorkflowParseError("document is not a JSON object")

    if "nodes" in document:
        nodes = _ui_nodes(document["nodes"], "nodes")
        # Nodes inside subgraph definitions (newer ComfyUI frontends)
        definitions = document.get("definitions")
        if isinstance(definitions, dict) and isinstance(definitions.get("subgraphs"), list):
            for subgraph in definitions["subgraphs"]:
                if isinstance(subgraph, dict) and "nodes" in subgraph:
                    nodes.extend(_ui_nodes(subgraph["nodes"], "subgraph nodes"))
        return nodes

    prompt = document.get("prompt") if isinstance(document.get("prompt"), dict) else document
    nodes = [
        _Node(id=str(node_id), type=raw["class_type"], widgets_values=None, inputs=raw.get("inputs"))
        for node_id, raw in prompt.items()
        if isinstance(raw, dict) and isinstance(raw.get("class_type"), str)
    ]
    if not nodes:
        raise WorkflowParseError("no node collection found (neither 'nodes' nor API-format entries)")
    return nodes


def _slot_values(node: _Node, slot: NodeModelSlot, offset: int) -> List[Any]:
    """Candidate values for one slot: positional widget value first, then named input."""
    name = slot.fields[offset]
    values = []

    widgets = node.widgets_values
    if slot.widget_index is not None and isinstance(widgets, list):
        index = slot.widget_index + offset
        if index < len(widgets) and widgets[index] is not None:
            values.append(widgets[index])
    elif isinstance(widgets, dict) and name in widgets:
        values.append(widgets[name])

    if isinstance(node.inputs, dict) and name in node.inputs:
        values.append(node.inputs[name])

    return values


def _malformed_reason(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return None if value.strip() else "empty model name"
    if isinstance(value, list):
        return "value is a link to another node, not a literal model name"
    return f"expected a model name string, got {type(value).__name__}"


# ============================================================================
# EXTRACTION
# ============================================================================

def extract_dependencies(document: Any) -> ExtractionResult:
    """
    Extract loader dependencies from a parsed workflow document.

    Each recognized loader yields one draft per slot (DualCLIPLoader yields
    two). Drafts are deduplicated on (model type, model name), keeping the
    first node that declared them.

    Args:
        document: Parsed workflow JSON (UI export or API prompt)

    Returns:
        ExtractionResult with dependencies and per-slot warnings

    Raises:
        WorkflowParseError: If the document has no node collection
    """
    result = ExtractionResult()
    seen = set()

    for node in iter_nodes(document):
        slot = NODE_MODEL_MAP.get(node.type)
        if slot is None:
            continue

        for offset, field_name in enumerate(slot.fields):
            candidates = _slot_values(node, slot, offset)
            if not candidates:
                if slot.widget_index is not None:
                    result.warnings.append(
                        ExtractionSkipped(node.id, node.type, field_name, "no value for this slot")
                    )
                continue

            value = next((v for v in candidates if _malformed_reason(v) is None), None)
            if value is None:
                reason = _malformed_reason(candidates[0])
                result.warnings.append(ExtractionSkipped(node.id, node.type, field_name, reason))
                continue

            value = value.strip()

            key = (slot.model_type, value)
            if key in seen:
                continue
            seen.add(key)
            result.dependencies.append(DependencyDraft(node.id, node.type, slot.model_type, value))

    for warning in result.warnings:
        logger.warning(f"Skipped dependency: {warning}")
    return result


# ============================================================================
# SUMMARY
# ============================================================================

# Widget positions: KSampler = seed, control_after_generate, steps, cfg, sampler_name, scheduler, denoise
# KSamplerAdvanced = add_noise, noise_seed, control_after_generate, steps, cfg, sampler_name,
#                    scheduler, start_at_step, end_at_step, return_with_leftover_noise (no denoise)
_SAMPLER_WIDGETS = {
    "KSampler": {"steps": 2, "cfg": 3, "sampler": 4, "scheduler": 5, "denoise": 6},
    "KSamplerAdvanced": {"steps": 3, "cfg": 4, "sampler": 5, "scheduler": 6},
}
_SAMPLER_INPUTS = {"steps": "steps", "cfg": "cfg", "sampler": "sampler_name", "scheduler": "scheduler", "denoise": "denoise"}
_NUMERIC_SETTINGS = ("steps", "cfg", "denoise")


@dataclass
class WorkflowSummary:
    """Descriptive facts about a workflow beyond its dependencies."""

    steps: Optional[float] = None
    cfg: Optional[float] = None
    sampler: Optional[str] = None
    scheduler: Optional[str] = None
    denoise: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    batch_size: Optional[int] = None
    description: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    has_upscaler: bool = False
    has_face_detailer: bool = False
    has_controlnet: bool = False
    has_ipadapter: bool = False
    has_lora: bool = False
    node_count: int = 0
    link_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _setting(node: _Node, name: str) -> Any:
    position = _SAMPLER_WIDGETS[node.type].get(name)
    if isinstance(node.widgets_values, list):
        if position is not None and position < len(node.widgets_values):
            return node.widgets_values[position]
        return None
    if isinstance(node.inputs, dict):
        return node.inputs.get(_SAMPLER_INPUTS[name])
    return None


def _widget_or_input(node: _Node, index: int, name: str) -> Any:
    if isinstance(node.widgets_values, list) and index < len(node.widgets_values):
        return node.widgets_values[index]
    if isinstance(node.inputs, dict):
        return node.inputs.get(name)
    return None


def summarize_workflow(document: Any) -> WorkflowSummary:
    """
    Summarize sampler settings, latent resolution, authoring metadata,
    feature usage and graph size.

    Raises:
        WorkflowParseError: If the document has no node collection
    """
    nodes = iter_nodes(document)
    summary = WorkflowSummary(node_count=len(nodes))

    sampler_node = next((n for n in nodes if n.type in _SAMPLER_WIDGETS), None)
    if sampler_node is not None:
        for name in _SAMPLER_INPUTS:
            value = _setting(sampler_node, name)
            if name in _NUMERIC_SETTINGS and _is_number(value):
                setattr(summary, name, value)
            elif name not in _NUMERIC_SETTINGS and isinstance(value, str):
                setattr(summary, name, value)

    latent_node = next((n for n in nodes if n.type == "EmptyLatentImage"), None)
    if latent_node is not None:
        for index, name in enumerate(("width", "height", "batch_size")):
            value = _widget_or_input(latent_node, index, name)
            if _is_number(value):
                setattr(summary, name, int(value))

    extra = document.get("extra") if isinstance(document.get("extra"), dict) else {}
    for key, fallback in (("description", "desc"), ("author", "creator"), ("version", None)):
        value = extra.get(key)
        if not isinstance(value, str) and fallback:
            value = extra.get(fallback)
        if isinstance(value, str):
            setattr(summary, key, value)
    if isinstance(extra.get("tags"), list):
        summary.tags = [t for t in extra["tags"] if isinstance(t, str)]

    for node in nodes:
        node_type = node.type
        if "Upscale" in node_type:
            summary.has_upscaler = True
        if "FaceDetailer" in node_type or "FaceRestore" in node_type:
            summary.has_face_detailer = True
        if "ControlNet" in node_type:
            summary.has_controlnet = True
        if "IPAdapter" in node_type:
            summary.has_ipadapter = True
        if "Lora" in node_type or "LoRA" in node_type:
            summary.has_lora = True

    if "nodes" in document:
        links = document.get("links")
        last_link_id = document.get("last_link_id")
        if isinstance(links, list):
            summary.link_count = len(links)
        elif _is_number(last_link_id):
            summary.link_count = int(last_link_id)
    else:
        summary.link_count = sum(
            1
            for node in nodes if isinstance(node.inputs, dict)
            for value in node.inputs.values() if isinstance(value, list)
        )

    return summary
