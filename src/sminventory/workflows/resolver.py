"""
Dependency Resolver

Matches the model names a workflow declares against the inventory. Matching
is tiered and the first tier with any candidate wins:

1. Exact case-insensitive filename
2. Declared name minus its last extension, against full filenames
   ("upscaler.pth.old" finds "upscaler.pth"; "model.ckpt" does not find
   "model.safetensors")
3. Declared name + ".safetensors"
4. Declared name contained in the filename or the catalog display name

Within the winning tier local files beat warehouse files, and ties are broken
by path so repeated runs give identical results.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ..forensics.signatures import ARCHITECTURE_FAMILIES, Architecture, ModelType
from ..inventory.schema import (
    TIER_LOCAL,
    TIER_WAREHOUSE,
    Ambiguous,
    DependencyReference,
    DependencyStatus,
    Incompatible,
    Missing,
    ModelFile,
    Resolution,
    Resolved,
    WorkflowStatus,
)
from .vram_estimator import estimate_missing_model_size

logger = logging.getLogger(__name__)


# =============================================================================
# MATCHING CONSTANTS
# =============================================================================

MATCH_EXACT = 1
MATCH_STEM = 2
MATCH_SAFETENSORS = 3
MATCH_SUBSTRING = 4

DEFAULT_EXTENSION = ".safetensors"

# Model types whose architecture must agree with the workflow's backbone
ADAPTER_TYPES = (ModelType.LORA, ModelType.CONTROLNET, ModelType.IPADAPTER)

# Types that define the workflow's primary architecture
BACKBONE_TYPES = (ModelType.CHECKPOINT, ModelType.DIFFUSION_MODEL)

_TIER_ORDER = (TIER_LOCAL, TIER_WAREHOUSE)


def declared_basename(model_name: str) -> str:
    """Last path component of a declared name ("SDXL\\x.safetensors" -> "x.safetensors")."""
    return os.path.basename(model_name.replace("\\", "/")).strip()


def architecture_family(architecture: Optional[str]) -> str:
    architecture = architecture or Architecture.UNKNOWN
    return ARCHITECTURE_FAMILIES.get(architecture, architecture)


# =============================================================================
# INVENTORY INDEX
# =============================================================================

class ModelIndex:
    """Lookup tables over an inventory snapshot; soft-marked missing models are left out."""

    def __init__(self, models: Iterable[ModelFile]):
        self.models: List[ModelFile] = sorted(
            (m for m in models if not m.missing),
            key=lambda m: (m.path, m.tier),
        )
        self._by_filename: Dict[str, List[ModelFile]] = {}
        for model in self.models:
            self._by_filename.setdefault(model.filename.lower(), []).append(model)

    def __len__(self) -> int:
        return len(self.models)

    def candidates(self, model_name: str) -> Dict[int, List[ModelFile]]:
        """
        Candidates for a declared name, grouped by match tier.

        Only the tiers that produced candidates are present; lists are in
        path order.
        """
        basename = declared_basename(model_name).lower()
        if not basename:
            return {}

        stem = os.path.splitext(basename)[0]
        tiers = {
            MATCH_EXACT: self._by_filename.get(basename, []),
            MATCH_STEM: self._by_filename.get(stem, []) if stem != basename else [],
            MATCH_SAFETENSORS: self._by_filename.get(basename + DEFAULT_EXTENSION, []),
            MATCH_SUBSTRING: [
                m for m in self.models
                if basename in m.filename.lower() or (m.catalog_name and basename in m.catalog_name.lower())
            ],
        }
        return {tier: found for tier, found in tiers.items() if found}


# =============================================================================
# RESOLUTION
# =============================================================================

def _by_storage_tier(models: Sequence[ModelFile]) -> List[ModelFile]:
    for tier in _TIER_ORDER:
        found = [m for m in models if m.tier == tier]
        if found:
            return found
    return []


def resolve_dependency(
    reference: DependencyReference,
    index: ModelIndex,
    report_ambiguous: bool = False,
    expected_architecture: Optional[str] = None,
) -> Resolution:
    """
    Resolve one dependency reference against the inventory.

    Args:
        reference: Dependency as declared by the workflow
        index: Inventory snapshot
        report_ambiguous: Return Ambiguous when the winning tier holds several
            distinct models, instead of taking the first by path
        expected_architecture: Workflow backbone architecture; when given,
            adapters of another architecture family resolve to Incompatible

    Returns:
        Resolved, Missing, Ambiguous or Incompatible
    """
    for match_tier, found in sorted(index.candidates(reference.model_name).items()):
        preferred = _by_storage_tier(found)
        if not preferred:
            continue
        model = preferred[0]

        if report_ambiguous:
            distinct = list(dict.fromkeys(m.identity for m in preferred))
            if len(distinct) > 1:
                logger.debug(f"{reference.model_name!r} is ambiguous at match tier {match_tier}: {distinct}")
                return Ambiguous(tier=model.tier, candidate_ids=tuple(distinct), model_name=reference.model_name)

        if (
            expected_architecture
            and reference.model_type in ADAPTER_TYPES
            and model.architecture != Architecture.UNKNOWN
            and architecture_family(model.architecture) != architecture_family(expected_architecture)
        ):
            return Incompatible(
                tier=model.tier,
                model_id=model.identity,
                expected=expected_architecture,
                actual=model.architecture,
            )

        return Resolved(
            tier=model.tier,
            model_id=model.identity,
            filename=model.filename,
            size_bytes=model.size_bytes,
            match_tier=match_tier,
        )

    return Missing(estimated_size=estimate_missing_model_size(reference.model_type, reference.model_name))


def _primary_architecture(references: Sequence[DependencyReference], index: ModelIndex) -> Optional[str]:
    """Architecture of the first backbone reference that resolves to a classified model."""
    for reference in references:
        if reference.model_type not in BACKBONE_TYPES:
            continue
        resolution = resolve_dependency(reference, index)
        if isinstance(resolution, Resolved):
            model = next(m for m in index.models if m.identity == resolution.model_id)
            if model.architecture != Architecture.UNKNOWN:
                return model.architecture
    return None


def resolve_dependencies(
    references: Sequence[DependencyReference],
    models: Union[ModelIndex, Iterable[ModelFile]],
    report_ambiguous: bool = False,
    check_compatibility: bool = False,
) -> List[DependencyReference]:
    """
    Resolve every reference of one workflow.

    Returns new references; the inputs are not modified. Running again over
    the same inventory and references gives the same statuses.

    Args:
        references: The workflow's dependency references
        models: Inventory snapshot (ModelFile records or a prebuilt ModelIndex)
        report_ambiguous: Surface same-tier ties as Ambiguous
        check_compatibility: Flag adapters whose architecture family differs
            from the workflow's backbone as Incompatible
    """
    index = models if isinstance(models, ModelIndex) else ModelIndex(models)
    primary = _primary_architecture(references, index)

    resolved = []
    for reference in references:
        expected = primary if check_compatibility else None
        resolution = resolve_dependency(reference, index, report_ambiguous, expected)
        if reference.model_type in ADAPTER_TYPES:
            reference = reference.model_copy(update={"expected_architecture": primary})
        resolved.append(reference.apply_resolution(resolution))

    counts = ResolutionCounts.from_references(resolved)
    logger.info(
        f"Resolved {counts.total} dependencies: {counts.resolved_local} local, "
        f"{counts.resolved_warehouse} warehouse, {counts.missing} missing"
    )
    return resolved


# =============================================================================
# AGGREGATE STATUS
# =============================================================================

@dataclass
class ResolutionCounts:
    total: int = 0
    resolved_local: int = 0
    resolved_warehouse: int = 0
    missing: int = 0
    ambiguous: int = 0
    incompatible: int = 0

    @classmethod
    def from_references(cls, references: Iterable[DependencyReference]) -> "ResolutionCounts":
        counts = cls()
        for reference in references:
            counts.total += 1
            if reference.status == DependencyStatus.RESOLVED_LOCAL:
                counts.resolved_local += 1
            elif reference.status == DependencyStatus.RESOLVED_WAREHOUSE:
                counts.resolved_warehouse += 1
            elif reference.status == DependencyStatus.MISSING:
                counts.missing += 1
            elif reference.status == DependencyStatus.AMBIGUOUS:
                counts.ambiguous += 1
            elif reference.status == DependencyStatus.INCOMPATIBLE:
                counts.incompatible += 1
        return counts

    @property
    def all_resolved(self) -> bool:
        return self.resolved_local + self.resolved_warehouse == self.total


def aggregate_status(references: Union[ResolutionCounts, Iterable[DependencyReference]]) -> WorkflowStatus:
    """
    Workflow status from its resolved references.

    All resolved with at least one local: ready-local. All resolved, none
    local: ready-warehouse. Any missing: missing-items. Anything else
    (no dependencies, ambiguous or incompatible leftovers): error.
    """
    counts = references if isinstance(references, ResolutionCounts) else ResolutionCounts.from_references(references)

    if counts.total and counts.all_resolved and counts.resolved_local > 0:
        return WorkflowStatus.READY_LOCAL
    if counts.total and counts.all_resolved and counts.resolved_warehouse > 0:
        return WorkflowStatus.READY_WAREHOUSE
    if counts.missing > 0:
        return WorkflowStatus.MISSING_ITEMS
    return WorkflowStatus.ERROR
