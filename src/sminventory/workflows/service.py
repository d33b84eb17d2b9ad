"""
Workflow Service

Glue between workflow files, the extractor, the resolver and a RecordStore:
scan a workflow into a descriptor plus dependency references, then resolve
those references against the stored inventory and record the outcome.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..forensics.exceptions import InventoryError, WorkflowParseError
from ..forensics.precision_maps import Precision, precision_from_filename
from ..inventory.schema import DependencyReference, DependencyStatus, ModelFile, WorkflowDescriptor, utc_now
from ..inventory.store import RecordStore, location_preference
from .graph_extractor import extract_dependencies, summarize_workflow
from .resolver import ModelIndex, ResolutionCounts, aggregate_status, resolve_dependencies
from .vram_estimator import VramEstimate, VramItem, architecture_from_name, estimate_workflow_vram

logger = logging.getLogger(__name__)


WORKFLOW_EXTENSION = ".json"


def workflow_display_name(filename: str) -> str:
    """'sdxl_portrait-v2.json' -> 'sdxl portrait v2'"""
    name = filename[: -len(WORKFLOW_EXTENSION)] if filename.lower().endswith(WORKFLOW_EXTENSION) else filename
    return name.replace("-", " ").replace("_", " ")


def find_workflow_files(root: str) -> List[str]:
    """Recursively list .json files under ``root``, skipping hidden directories."""
    root = os.path.abspath(os.fspath(root))
    if not os.path.isdir(root):
        logger.warning(f"Workflow directory does not exist: {root}")
        return []

    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for name in filenames:
            if name.lower().endswith(WORKFLOW_EXTENSION):
                found.append(os.path.join(dirpath, name))
    return sorted(found)


# =============================================================================
# SCANNING
# =============================================================================

def _load_document(path: str) -> Dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise WorkflowParseError(f"invalid JSON: {e}", path)
    except (OSError, UnicodeDecodeError) as e:
        raise WorkflowParseError(f"cannot read file: {e}", path)

    if not isinstance(document, dict):
        raise WorkflowParseError("document is not a JSON object", path)
    return document


def scan_workflow_file(path: str, store: RecordStore) -> WorkflowDescriptor:
    """
    Parse one workflow file and store its descriptor and dependency references.

    A workflow already stored under the same path keeps its id and creation
    time; its dependency references are replaced wholesale and start out
    unresolved.

    Args:
        path: Workflow JSON file
        store: Record store to save into

    Returns:
        The saved WorkflowDescriptor (status "new")

    Raises:
        WorkflowParseError: If the file is unreadable or has no node collection
    """
    path = os.path.abspath(os.fspath(path))
    document = _load_document(path)

    try:
        extraction = extract_dependencies(document)
        summary = summarize_workflow(document)
    except WorkflowParseError as e:
        raise WorkflowParseError(e.detail, path)

    filename = os.path.basename(path)
    now = utc_now()
    previous = store.get_workflow_by_path(path)

    descriptor = WorkflowDescriptor(
        path=path,
        filename=filename,
        name=workflow_display_name(filename),
        total_dependencies=len(extraction.dependencies),
        missing_count=len(extraction.dependencies),
        raw_graph=document,
        parse_warnings=[str(w) for w in extraction.warnings],
        summary=summary.to_dict(),
        created_at=previous.created_at if previous else now,
        updated_at=now,
    )
    if previous is not None:
        descriptor.id = previous.id

    references = [
        DependencyReference(
            workflow_id=descriptor.id,
            node_id=draft.node_id,
            node_type=draft.node_type,
            model_type=draft.model_type,
            model_name=draft.model_name,
        )
        for draft in extraction.dependencies
    ]

    saved = store.save_workflow(descriptor)
    store.replace_dependencies(saved.id, references)
    logger.debug(f"Scanned workflow {filename}: {len(references)} dependencies, {len(extraction.warnings)} warnings")
    return saved


@dataclass
class WorkflowScanReport:
    """Outcome of scanning workflow directories."""

    scanned_count: int = 0
    new_workflows: int = 0
    updated_workflows: int = 0
    total_dependencies: int = 0
    errors: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    def __repr__(self) -> str:
        return (
            f"WorkflowScanReport({self.scanned_count} scanned: {self.new_workflows} new, "
            f"{self.updated_workflows} updated, {len(self.errors)} errors)"
        )


def scan_workflows(directories: Iterable[str], store: RecordStore) -> WorkflowScanReport:
    """
    Scan every workflow file under the given directories.

    An unreadable workflow is reported in ``errors`` and the rest are still
    scanned.
    """
    started = time.monotonic()
    report = WorkflowScanReport()

    for directory in directories:
        for path in find_workflow_files(directory):
            report.scanned_count += 1
            existed = store.get_workflow_by_path(path) is not None
            try:
                descriptor = scan_workflow_file(path, store)
            except WorkflowParseError as e:
                logger.warning(f"Skipping workflow {path}: {e.detail}")
                report.errors.append(f"{path}: {e.detail}")
                continue

            report.total_dependencies += descriptor.total_dependencies
            if existed:
                report.updated_workflows += 1
            else:
                report.new_workflows += 1

    report.duration_s = time.monotonic() - started
    logger.info(
        f"Workflow scan complete: {report.new_workflows} new, {report.updated_workflows} updated, "
        f"{len(report.errors)} errors in {report.duration_s:.2f}s"
    )
    return report


# =============================================================================
# RESOLUTION
# =============================================================================

def _vram_item(reference: DependencyReference, model: Optional[ModelFile]) -> VramItem:
    if model is not None:
        return VramItem(
            model_type=reference.model_type,
            precision=model.precision,
            size_bytes=model.size_bytes,
            architecture=model.architecture,
        )
    return VramItem(
        model_type=reference.model_type,
        precision=precision_from_filename(reference.model_name) or Precision.UNKNOWN,
        size_bytes=reference.estimated_size or 0,
        architecture=architecture_from_name(reference.model_name),
    )


def _matched_model(reference: DependencyReference, models: Dict[str, ModelFile]) -> Optional[ModelFile]:
    if reference.resolved_model_id:
        return models.get(reference.resolved_model_id)
    if reference.status == DependencyStatus.AMBIGUOUS and reference.candidate_ids:
        return models.get(reference.candidate_ids[0])
    return None


def estimate_references_vram(
    references: Iterable[DependencyReference],
    models: Dict[str, ModelFile],
) -> VramEstimate:
    """VRAM estimate for resolved references; missing ones use their estimated size."""
    return estimate_workflow_vram(_vram_item(r, _matched_model(r, models)) for r in references)


def resolve_workflow(
    workflow_id: str,
    store: RecordStore,
    report_ambiguous: bool = False,
    check_compatibility: bool = False,
) -> WorkflowDescriptor:
    """
    Resolve a stored workflow's dependencies against the stored inventory.

    Updates every reference's status, then the descriptor's counts, status,
    total size (resolved sizes plus estimates for missing models) and peak
    VRAM estimate, and saves both.

    Raises:
        KeyError: If no workflow with ``workflow_id`` is stored
    """
    workflow = store.get_workflow(workflow_id)
    if workflow is None:
        raise KeyError(f"No workflow with id {workflow_id}")

    inventory = store.list_models()
    models: Dict[str, ModelFile] = {}
    for model in sorted(inventory, key=location_preference):
        models.setdefault(model.identity, model)
    references = resolve_dependencies(
        store.get_dependencies(workflow_id),
        ModelIndex(inventory),
        report_ambiguous=report_ambiguous,
        check_compatibility=check_compatibility,
    )

    total_size = 0
    for reference in references:
        model = _matched_model(reference, models)
        if model is not None:
            total_size += model.size_bytes
        elif reference.estimated_size:
            total_size += reference.estimated_size

    counts = ResolutionCounts.from_references(references)
    estimate = estimate_references_vram(references, models)
    now = utc_now()

    workflow.status = aggregate_status(counts)
    workflow.total_dependencies = counts.total
    workflow.resolved_local = counts.resolved_local
    workflow.resolved_warehouse = counts.resolved_warehouse
    workflow.missing_count = counts.missing
    workflow.total_size_bytes = total_size
    workflow.estimated_vram_gb = estimate.peak_gb
    workflow.scanned_at = now
    workflow.updated_at = now

    store.replace_dependencies(workflow_id, references)
    saved = store.save_workflow(workflow)
    logger.info(f"Workflow {workflow.filename}: {workflow.status}, peak VRAM {estimate.peak_gb}GB")
    return saved


def resolve_all_workflows(store: RecordStore, **kwargs) -> Dict[str, WorkflowDescriptor]:
    """
    Resolve every stored workflow; returns {workflow id: descriptor}.

    One workflow failing is logged and does not stop the others.
    """
    results = {}
    for workflow in store.list_workflows():
        try:
            results[workflow.id] = resolve_workflow(workflow.id, store, **kwargs)
        except (InventoryError, ValueError) as e:
            logger.warning(f"Failed to resolve workflow {workflow.path}: {e}")
    return results
