"""
Model Indexer

Walks model directories, analyzes each weight file and upserts ModelFile
records into a RecordStore.

Files are independent, so analysis runs on a bounded thread pool; the pool
size caps concurrent disk reads rather than CPU. A failure on one file is
recorded in the ScanReport and never aborts the rest of the batch.
"""

import json
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..forensics.exceptions import InventoryError
from ..forensics.hashing import ValidationLevel
from ..forensics.model_inspector import INTEGRITY_PENDING, INTEGRITY_VALID, analyze_model
from .schema import TIER_LOCAL, TIER_WAREHOUSE, ModelFile, ScanOptions, StorageTier, utc_now
from .store import RecordStore

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

MODEL_EXTENSIONS = (".safetensors", ".ckpt", ".pt", ".pth", ".bin", ".gguf")

# Connected-model sidecar written by CivitAI-aware model managers
SIDECAR_SUFFIX = ".cm-info.json"

_SKIPPED_DIRECTORIES = ("node_modules", "__pycache__")


# ============================================================================
# DISCOVERY
# ============================================================================

def find_model_files(root: str) -> List[str]:
    """
    Recursively list weight files under ``root``.

    Hidden directories (leading ".") and cache folders are not descended
    into. Returns absolute paths, sorted; a missing root yields [].
    """
    root = os.path.abspath(os.fspath(root))
    if not os.path.isdir(root):
        logger.warning(f"Directory does not exist: {root}")
        return []

    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".") and d not in _SKIPPED_DIRECTORIES]
        for name in filenames:
            if os.path.splitext(name)[1].lower() in MODEL_EXTENSIONS:
                found.append(os.path.join(dirpath, name))
    return sorted(found)


@dataclass
class SidecarMetadata:
    """Catalog facts from a ``.cm-info.json`` sidecar."""

    model_id: Optional[int] = None
    version_id: Optional[int] = None
    name: Optional[str] = None
    base_model: Optional[str] = None
    expected_digest: Optional[str] = None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def load_sidecar_metadata(model_path: str) -> Optional[SidecarMetadata]:
    """
    Load the ``.cm-info.json`` sidecar next to a model file, if any.

    Both ``model.cm-info.json`` and ``model.safetensors.cm-info.json`` are
    looked for. An undecodable sidecar is logged and ignored.

    Args:
        model_path: Path of the weight file

    Returns:
        SidecarMetadata or None if no readable sidecar exists
    """
    model_path = os.fspath(model_path)
    candidates = (os.path.splitext(model_path)[0] + SIDECAR_SUFFIX, model_path + SIDECAR_SUFFIX)

    for sidecar_path in candidates:
        if not os.path.isfile(sidecar_path):
            continue
        try:
            with open(sidecar_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse sidecar {sidecar_path}: {e}")
            continue

        if not isinstance(data, dict):
            logger.warning(f"Ignoring sidecar {sidecar_path}: not a JSON object")
            continue

        hashes = data.get("Hashes") if isinstance(data.get("Hashes"), dict) else {}
        expected = _as_str(hashes.get("SHA256"))
        return SidecarMetadata(
            model_id=_as_int(data.get("ModelId")),
            version_id=_as_int(data.get("VersionId")),
            name=_as_str(data.get("ModelName")),
            base_model=_as_str(data.get("BaseModel")),
            expected_digest=expected.upper() if expected else None,
        )

    return None


# ============================================================================
# INDEXING
# ============================================================================

def index_model_file(
    path: str,
    tier: StorageTier = TIER_LOCAL,
    level: ValidationLevel = "standard",
    read_sidecar: bool = True,
) -> ModelFile:
    """
    Analyze one weight file and build its ModelFile record.

    Args:
        path: Path of the weight file
        tier: Storage tier the file lives on
        level: Validation level; decides which digests are computed
        read_sidecar: Merge catalog facts from a ``.cm-info.json`` sidecar

    Returns:
        ModelFile (not yet saved)

    Raises:
        ModelFileNotFoundError: If the file vanished before it was read
        OSError: If the file cannot be read
    """
    path = os.path.abspath(os.fspath(path))
    sidecar = load_sidecar_metadata(path) if read_sidecar else None
    expected_digest = sidecar.expected_digest if sidecar else None

    # The sidecar digest is a full-file SHA-256; only full validation can check it
    analysis = analyze_model(path, level, expected_digest=expected_digest if level == "full" else None)

    integrity = analysis.integrity_status
    if level == "quick" and integrity == INTEGRITY_VALID:
        # Size checks alone do not establish integrity
        integrity = INTEGRITY_PENDING

    now = utc_now()
    return ModelFile(
        path=path,
        filename=analysis.filename,
        tier=tier,
        size_bytes=analysis.size_bytes,
        model_type=analysis.detection.model_type,
        architecture=analysis.detection.architecture,
        precision=analysis.precision,
        confidence=analysis.detection.confidence,
        detected_from=analysis.detection.detected_from,
        integrity_status=integrity,
        partial_digest=analysis.partial_digest,
        full_digest=analysis.full_digest,
        expected_digest=expected_digest,
        header_error=analysis.header_error,
        metadata=analysis.embedded.combined,
        trigger_words=analysis.embedded.trigger_words,
        base_model=analysis.embedded.base_model,
        catalog_model_id=sidecar.model_id if sidecar else None,
        catalog_version_id=sidecar.version_id if sidecar else None,
        catalog_name=sidecar.name if sidecar else None,
        catalog_base_model=sidecar.base_model if sidecar else None,
        created_at=now,
        updated_at=now,
        last_verified_at=now if level != "quick" and integrity == INTEGRITY_VALID else None,
    )


@dataclass
class ScanReport:
    """Outcome of scanning one root directory."""

    root: str
    tier: str
    scanned_count: int = 0
    new_models: int = 0
    updated_models: int = 0
    skipped_unchanged: int = 0
    marked_missing: int = 0
    errors: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    def __repr__(self) -> str:
        return (
            f"ScanReport({self.root!r}, {self.tier}: {self.new_models} new, {self.updated_models} updated, "
            f"{self.skipped_unchanged} unchanged, {self.marked_missing} missing, {len(self.errors)} errors)"
        )


def _is_under(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows
        return False


def scan_directory(root: str, store: RecordStore, options: Optional[ScanOptions] = None) -> ScanReport:
    """
    Index every weight file under ``root`` into ``store``.

    Files whose size matches their stored record are skipped unless
    ``options.force_rescan``. Records under ``root`` whose file has vanished
    are soft-marked missing.

    Args:
        root: Directory to scan
        store: Record store to upsert into
        options: ScanOptions (defaults: local tier, standard validation, 4 workers)

    Returns:
        ScanReport
    """
    options = options or ScanOptions()
    root = os.path.abspath(os.fspath(root))
    started = time.monotonic()
    report = ScanReport(root=root, tier=options.tier)

    logger.info(f"Starting scan of {root} ({options.tier}, validation: {options.validation_level})")
    files = find_model_files(root)
    logger.info(f"Found {len(files)} model files")

    existing: Dict[str, ModelFile] = {
        m.path: m
        for m in store.list_models(include_missing=True, tier=options.tier)
        if _is_under(m.path, root)
    }

    pending = []
    for path in files:
        report.scanned_count += 1
        previous = existing.get(path)
        if previous is not None and not options.force_rescan and not previous.missing:
            try:
                if os.path.getsize(path) == previous.size_bytes:
                    report.skipped_unchanged += 1
                    continue
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")
        pending.append(path)

    with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
        futures = {
            executor.submit(index_model_file, path, options.tier, options.validation_level, options.read_sidecars): path
            for path in pending
        }
        for future in as_completed(futures):
            path = futures[future]
            try:
                model = future.result()
            except (InventoryError, OSError) as e:
                logger.warning(f"Failed to index model {path}: {e}")
                report.errors.append(f"{path}: {e}")
                continue

            # Looked up in the store, not in ``existing``: overlapping roots may
            # have stored this path under the other tier
            if store.get_model_by_path(path) is not None:
                report.updated_models += 1
            else:
                report.new_models += 1
            store.save_model(model)

    if options.mark_missing:
        present = set(files)
        for path, previous in existing.items():
            if path not in present and not previous.missing:
                store.mark_model_missing(path)
                report.marked_missing += 1
                logger.info(f"Marked missing model: {path}")

    report.duration_s = time.monotonic() - started
    logger.info(
        f"Scan complete: {report.new_models} new, {report.updated_models} updated, "
        f"{len(report.errors)} errors in {report.duration_s:.2f}s"
    )
    return report


def scan_all_models(
    local_root: str,
    store: RecordStore,
    warehouse_root: Optional[str] = None,
    validation_level: ValidationLevel = "standard",
    force_rescan: bool = False,
    max_workers: int = 4,
) -> Dict[str, Optional[ScanReport]]:
    """
    Scan the local root and, if it exists, the warehouse root.

    Each tier keeps its own records; a model present on both tiers has one
    record per copy, and lookups prefer the local one.

    Returns:
        {"local": ScanReport, "warehouse": ScanReport or None}
    """
    results: Dict[str, Optional[ScanReport]] = {TIER_LOCAL: None, TIER_WAREHOUSE: None}

    if warehouse_root and os.path.isdir(warehouse_root):
        results[TIER_WAREHOUSE] = scan_directory(
            warehouse_root, store,
            ScanOptions(tier=TIER_WAREHOUSE, validation_level=validation_level,
                        force_rescan=force_rescan, max_workers=max_workers),
        )
    elif warehouse_root:
        logger.info(f"Warehouse directory does not exist: {warehouse_root}")

    results[TIER_LOCAL] = scan_directory(
        local_root, store,
        ScanOptions(tier=TIER_LOCAL, validation_level=validation_level,
                    force_rescan=force_rescan, max_workers=max_workers),
    )
    return results


def model_stats(store: RecordStore) -> Dict[str, Any]:
    """Counts by tier, type, architecture and integrity status, plus total size."""
    by_tier: Dict[str, int] = {}
    by_type: Dict[str, int] = {}
    by_architecture: Dict[str, int] = {}
    by_status: Dict[str, int] = {}
    total_size = 0
    missing = 0

    for model in store.list_models(include_missing=True):
        if model.missing:
            missing += 1
            continue
        by_tier[model.tier] = by_tier.get(model.tier, 0) + 1
        by_type[model.model_type] = by_type.get(model.model_type, 0) + 1
        by_architecture[model.architecture] = by_architecture.get(model.architecture, 0) + 1
        by_status[model.integrity_status] = by_status.get(model.integrity_status, 0) + 1
        total_size += model.size_bytes

    return {
        "total": sum(by_tier.values()),
        "by_tier": by_tier,
        "by_type": by_type,
        "by_architecture": by_architecture,
        "by_status": by_status,
        "total_size": total_size,
        "missing": missing,
    }
