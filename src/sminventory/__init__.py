"""
sminventory - Diffusion model inventory and workflow dependency resolution.

Submodules:
    - sminventory.forensics: Header reading, classification and content digests
    - sminventory.inventory: Model records, directory scanning and catalog lookup
    - sminventory.workflows: Workflow extraction, resolution and VRAM estimation
"""

# Import submodules for namespace access (smi.forensics.analyze_model(...))
from . import forensics
from . import inventory
from . import workflows

# Top-level convenience exports (most common operations)
from .forensics import analyze_model, classify_header, read_safetensors_header, validate_model
from .inventory import InMemoryRecordStore, ModelFile, RecordStore, scan_all_models, scan_directory
from .workflows import (
    estimate_workflow_vram,
    extract_dependencies,
    resolve_dependencies,
    resolve_workflow,
    scan_workflows,
)

__version__ = "0.1.0"

__all__ = [
    # Submodules
    "forensics",
    "inventory",
    "workflows",

    # Primary API
    "analyze_model",
    "read_safetensors_header",
    "classify_header",
    "validate_model",
    "scan_directory",
    "scan_all_models",
    "scan_workflows",
    "resolve_workflow",
    "extract_dependencies",
    "resolve_dependencies",
    "estimate_workflow_vram",
    "ModelFile",
    "RecordStore",
    "InMemoryRecordStore",
]
