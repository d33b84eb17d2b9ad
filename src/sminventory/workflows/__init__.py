"""
Workflow dependency analysis: extraction, resolution and VRAM estimation.
"""

from .graph_extractor import (
    NODE_MODEL_MAP,
    DependencyDraft,
    ExtractionResult,
    ExtractionSkipped,
    WorkflowSummary,
    extract_dependencies,
    summarize_workflow,
)
from .resolver import ModelIndex, ResolutionCounts, aggregate_status, resolve_dependencies, resolve_dependency
from .service import (
    WorkflowScanReport,
    find_workflow_files,
    resolve_all_workflows,
    resolve_workflow,
    scan_workflow_file,
    scan_workflows,
)
from .vram_estimator import (
    VramEstimate,
    VramFit,
    VramItem,
    check_vram_fit,
    estimate_missing_model_size,
    estimate_model_vram,
    estimate_workflow_vram,
    format_file_size,
    recommend_precision,
)

__all__ = [
    # Orchestration
    "scan_workflow_file",
    "scan_workflows",
    "find_workflow_files",
    "resolve_workflow",
    "resolve_all_workflows",
    "WorkflowScanReport",

    # Extraction
    "extract_dependencies",
    "summarize_workflow",
    "NODE_MODEL_MAP",
    "DependencyDraft",
    "ExtractionResult",
    "ExtractionSkipped",
    "WorkflowSummary",

    # Resolution
    "resolve_dependency",
    "resolve_dependencies",
    "aggregate_status",
    "ModelIndex",
    "ResolutionCounts",

    # VRAM
    "estimate_model_vram",
    "estimate_workflow_vram",
    "estimate_missing_model_size",
    "recommend_precision",
    "check_vram_fit",
    "format_file_size",
    "VramItem",
    "VramEstimate",
    "VramFit",
]
