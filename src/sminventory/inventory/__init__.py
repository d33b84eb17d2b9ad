"""
Model inventory: persisted records, directory scanning and catalog enrichment.
"""

from .catalog import CatalogClient, CatalogEntry, enrich_model
from .indexer import (
    ScanReport,
    SidecarMetadata,
    find_model_files,
    index_model_file,
    load_sidecar_metadata,
    model_stats,
    scan_all_models,
    scan_directory,
)
from .schema import (
    Ambiguous,
    DependencyReference,
    DependencyStatus,
    Incompatible,
    Missing,
    ModelFile,
    Resolution,
    Resolved,
    ScanOptions,
    WorkflowDescriptor,
    WorkflowStatus,
)
from .store import InMemoryRecordStore, RecordStore

__all__ = [
    # Scanning
    "scan_directory",
    "scan_all_models",
    "index_model_file",
    "find_model_files",
    "load_sidecar_metadata",
    "model_stats",
    "ScanOptions",
    "ScanReport",
    "SidecarMetadata",

    # Records
    "ModelFile",
    "WorkflowDescriptor",
    "DependencyReference",
    "WorkflowStatus",
    "DependencyStatus",
    "Resolution",
    "Resolved",
    "Missing",
    "Ambiguous",
    "Incompatible",

    # Persistence
    "RecordStore",
    "InMemoryRecordStore",

    # Catalog
    "CatalogClient",
    "CatalogEntry",
    "enrich_model",
]
