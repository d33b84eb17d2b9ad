"""
Inventory Schema Definitions

Pydantic BaseModel schemas for the records the inventory persists through a
RecordStore: model files, workflows and their dependency references. Also
defines the Resolution sum type that is the only way a dependency's status
and resolved model id get written.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from ..forensics.exceptions import ResolutionAmbiguousError

StorageTier = Literal["local", "warehouse"]

TIER_LOCAL = "local"
TIER_WAREHOUSE = "warehouse"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ============================================================================
# STATUS VOCABULARIES
# ============================================================================

class WorkflowStatus(str, Enum):
    """Aggregate readiness of a workflow."""
    NEW = "new"
    MISSING_ITEMS = "scanned-missing-items"
    ERROR = "scanned-error"
    READY_LOCAL = "scanned-ready-local"
    READY_WAREHOUSE = "scanned-ready-warehouse"

    def __str__(self):
        return self.value


class DependencyStatus(str, Enum):
    """Resolution state of one dependency reference."""
    UNRESOLVED = "unresolved"
    RESOLVED_LOCAL = "resolved-local"
    RESOLVED_WAREHOUSE = "resolved-warehouse"
    MISSING = "missing"
    AMBIGUOUS = "ambiguous"
    INCOMPATIBLE = "incompatible"

    def __str__(self):
        return self.value


# Statuses that must carry a resolved model id (and no others may)
STATUSES_WITH_MODEL = (
    DependencyStatus.RESOLVED_LOCAL,
    DependencyStatus.RESOLVED_WAREHOUSE,
    DependencyStatus.INCOMPATIBLE,
)


# ============================================================================
# MODEL FILE
# ============================================================================

class ModelFile(BaseModel):
    """A weight file on local or warehouse storage."""
    path: str = Field(..., description="Absolute path of the file")
    filename: str = Field(..., description="Base name of the file")
    tier: StorageTier = Field(TIER_LOCAL, description="Storage tier ('local' or 'warehouse')")
    size_bytes: int = Field(0, description="File size in bytes")

    # Classification
    model_type: str = Field("unknown", description="Detected type (checkpoint, lora, vae, ...)")
    architecture: str = Field("unknown", description="Detected architecture (SD15, SDXL, Flux, ...)")
    precision: str = Field("unknown", description="Detected precision (fp16, fp8, gguf, ...)")
    confidence: str = Field("low", description="Detection confidence ('high', 'medium', 'low')")
    detected_from: str = Field("unknown", description="Signal the classification came from")

    # Integrity
    integrity_status: str = Field("pending", description="pending, valid, corrupt, incomplete or unknown")
    partial_digest: Optional[str] = Field(None, description="SHA-256 over head/tail windows plus length")
    full_digest: Optional[str] = Field(None, description="SHA-256 over the whole file (canonical identity)")
    expected_digest: Optional[str] = Field(None, description="SHA-256 declared by a sidecar or the catalog")
    header_error: Optional[str] = Field(None, description="Why the header could not be read, if it could not")

    # Embedded metadata
    metadata: Dict[str, str] = Field(default_factory=dict, description="ss_* and modelspec.* metadata entries")
    trigger_words: List[str] = Field(default_factory=list, description="Trigger words from training tag frequencies")
    base_model: Optional[str] = Field(None, description="Base model declared in embedded metadata")

    # Catalog enrichment
    catalog_model_id: Optional[int] = Field(None, description="Remote catalog model id")
    catalog_version_id: Optional[int] = Field(None, description="Remote catalog model-version id")
    catalog_name: Optional[str] = Field(None, description="Display name in the remote catalog")
    catalog_base_model: Optional[str] = Field(None, description="Base model according to the remote catalog")
    catalog_download_url: Optional[str] = Field(None, description="Download URL according to the remote catalog")

    # Lifecycle
    missing: bool = Field(False, description="File vanished from disk on a later scan")
    missing_since: Optional[datetime] = Field(None, description="When the file was first found missing")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_verified_at: Optional[datetime] = Field(None, description="Last successful digest validation")

    @property
    def identity(self) -> str:
        """
        Logical model id.

        The full digest once known, shared by every copy of the same bytes.
        Until then the path: a partial digest only samples the file, so two
        records are never treated as one model on its strength.
        """
        if self.full_digest:
            return self.full_digest.upper()
        return f"path:{self.path}"


# ============================================================================
# RESOLUTION SUM TYPE
# ============================================================================

@dataclass(frozen=True)
class Resolved:
    """Dependency matched an inventory model."""
    tier: str
    model_id: str
    filename: str
    size_bytes: int
    match_tier: int


@dataclass(frozen=True)
class Missing:
    """No inventory model matched; size is an estimate for download planning."""
    estimated_size: int


@dataclass(frozen=True)
class Ambiguous:
    """Several distinct models tie within the winning match tier and storage tier."""
    tier: str
    candidate_ids: Tuple[str, ...]
    model_name: str = ""

    def raise_error(self) -> None:
        raise ResolutionAmbiguousError(self.model_name, self.tier, self.candidate_ids)


@dataclass(frozen=True)
class Incompatible:
    """Dependency matched a model of a different architecture family."""
    tier: str
    model_id: str
    expected: str
    actual: str


Resolution = Union[Resolved, Missing, Ambiguous, Incompatible]


# ============================================================================
# WORKFLOWS
# ============================================================================

class DependencyReference(BaseModel):
    """A model a workflow node declares it needs."""
    id: str = Field(default_factory=new_id)
    workflow_id: str = Field(..., description="Owning workflow")
    node_id: Optional[str] = Field(None, description="Id of the originating node")
    node_type: str = Field(..., description="Node class, e.g. 'CheckpointLoaderSimple'")
    model_type: str = Field(..., description="Declared model type")
    model_name: str = Field(..., description="Model name exactly as written in the workflow")

    status: DependencyStatus = Field(DependencyStatus.UNRESOLVED)
    resolved_model_id: Optional[str] = Field(None, description="Identity of the matched ModelFile")
    match_tier: Optional[int] = Field(None, description="Name-matching tier that produced the match (1-4)")
    expected_architecture: Optional[str] = Field(None, description="Architecture the workflow expects")
    estimated_size: Optional[int] = Field(None, description="Estimated bytes, when missing")
    compatibility_issue: Optional[str] = Field(None, description="Why the match is incompatible")
    candidate_ids: List[str] = Field(default_factory=list, description="Tied candidates, when ambiguous")
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _status_matches_model_id(self) -> "DependencyReference":
        has_model = self.resolved_model_id is not None
        needs_model = self.status in STATUSES_WITH_MODEL
        if has_model != needs_model:
            raise ValueError(
                f"status {self.status.value!r} is inconsistent with resolved_model_id={self.resolved_model_id!r}"
            )
        return self

    def apply_resolution(self, resolution: Resolution) -> "DependencyReference":
        """
        Return a copy of this reference with the resolution applied.

        Every resolution-derived field is rewritten together, so re-applying
        after a different earlier outcome never leaves stale values.
        """
        update: Dict[str, Any] = {
            "resolved_model_id": None,
            "match_tier": None,
            "estimated_size": None,
            "compatibility_issue": None,
            "candidate_ids": [],
        }

        if isinstance(resolution, Resolved):
            update["status"] = (
                DependencyStatus.RESOLVED_LOCAL if resolution.tier == TIER_LOCAL
                else DependencyStatus.RESOLVED_WAREHOUSE
            )
            update["resolved_model_id"] = resolution.model_id
            update["match_tier"] = resolution.match_tier
        elif isinstance(resolution, Missing):
            update["status"] = DependencyStatus.MISSING
            update["estimated_size"] = resolution.estimated_size
        elif isinstance(resolution, Ambiguous):
            update["status"] = DependencyStatus.AMBIGUOUS
            update["candidate_ids"] = list(resolution.candidate_ids)
        elif isinstance(resolution, Incompatible):
            update["status"] = DependencyStatus.INCOMPATIBLE
            update["resolved_model_id"] = resolution.model_id
            update["compatibility_issue"] = (
                f"expected {resolution.expected} architecture, found {resolution.actual}"
            )
        else:
            raise TypeError(f"Not a resolution: {resolution!r}")

        return DependencyReference.model_validate({**self.model_dump(), **update})


class WorkflowDescriptor(BaseModel):
    """A workflow graph file and its aggregate dependency assessment."""
    id: str = Field(default_factory=new_id)
    path: str = Field(..., description="Path of the workflow JSON file")
    filename: str = Field(..., description="Base name of the workflow file")
    name: Optional[str] = Field(None, description="Display name")
    status: WorkflowStatus = Field(WorkflowStatus.NEW)

    total_dependencies: int = Field(0)
    resolved_local: int = Field(0)
    resolved_warehouse: int = Field(0)
    missing_count: int = Field(0)
    total_size_bytes: int = Field(0, description="Resolved sizes plus estimates for missing models")
    estimated_vram_gb: Optional[float] = Field(None, description="Estimated peak VRAM")

    raw_graph: Dict[str, Any] = Field(default_factory=dict, description="Workflow document as parsed")
    parse_warnings: List[str] = Field(default_factory=list, description="Dependencies that could not be extracted")
    summary: Dict[str, Any] = Field(default_factory=dict, description="Sampler, resolution and feature summary")

    created_at: datetime = Field(default_factory=utc_now)
    scanned_at: Optional[datetime] = Field(None)
    updated_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# SCAN CONFIGURATION
# ============================================================================

class ScanOptions(BaseModel):
    """Options for a directory scan."""
    tier: StorageTier = Field(TIER_LOCAL, description="Tier assigned to files under the scanned root")
    validation_level: Literal["quick", "standard", "full"] = Field(
        "standard", description="Digest work done per file"
    )
    max_workers: int = Field(4, ge=1, description="Files analyzed in parallel")
    force_rescan: bool = Field(False, description="Re-analyze files whose size is unchanged")
    read_sidecars: bool = Field(True, description="Merge <name>.cm-info.json sidecar metadata")
    mark_missing: bool = Field(True, description="Soft-mark records under the root whose file vanished")
