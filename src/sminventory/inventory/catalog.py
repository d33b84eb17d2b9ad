"""
Remote Catalog Client

Looks up a model version in a CivitAI-compatible catalog by the full SHA-256
digest the identity engine computes, and merges the result into a ModelFile.

Only the by-hash endpoint is used (one small JSON GET per model). A model the
catalog does not know is a normal outcome (None), not an error.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from ..forensics.exceptions import CatalogLookupError
from ..forensics.signatures import Architecture, ModelType, lookup_base_model_version
from ..utils import check_internet
from .schema import ModelFile, utc_now

logger = logging.getLogger(__name__)


# ============================================================================
# CATALOG CONSTANTS
# ============================================================================

DEFAULT_CATALOG_URL = "https://civitai.com/api/v1"
DEFAULT_TIMEOUT_S = 10.0
USER_AGENT = "sminventory/0.1"

# Catalog model types -> inventory model types
CATALOG_TYPE_MAP = {
    "checkpoint": ModelType.CHECKPOINT,
    "textualinversion": ModelType.EMBEDDING,
    "lora": ModelType.LORA,
    "locon": ModelType.LORA,
    "lycoris": ModelType.LORA,
    "dora": ModelType.LORA,
    "controlnet": ModelType.CONTROLNET,
    "vae": ModelType.VAE,
    "upscaler": ModelType.UPSCALER,
}


class CatalogEntry(BaseModel):
    """A model version as described by the remote catalog."""
    model_id: Optional[int] = Field(None, description="Catalog model id")
    version_id: Optional[int] = Field(None, description="Catalog model-version id")
    name: Optional[str] = Field(None, description="Model display name")
    version_name: Optional[str] = Field(None, description="Version display name")
    model_type: str = Field(ModelType.UNKNOWN, description="Inventory model type mapped from the catalog type")
    base_model: Optional[str] = Field(None, description="Catalog base model, e.g. 'SDXL 1.0'")
    trigger_words: List[str] = Field(default_factory=list, description="Trained words")
    download_url: Optional[str] = Field(None, description="Primary download URL")
    sha256: Optional[str] = Field(None, description="SHA-256 of the primary file (uppercase)")


def _primary_file_sha256(files: Any) -> Optional[str]:
    if not isinstance(files, list):
        return None
    candidates = [f for f in files if isinstance(f, dict)]
    primary = next((f for f in candidates if f.get("primary")), candidates[0] if candidates else None)
    if primary is None:
        return None
    hashes = primary.get("hashes")
    value = hashes.get("SHA256") if isinstance(hashes, dict) else None
    return value.upper() if isinstance(value, str) else None


def parse_catalog_response(data: Any) -> CatalogEntry:
    """
    Convert a by-hash response body into a CatalogEntry.

    Raises:
        CatalogLookupError: If the body is not a JSON object
    """
    if not isinstance(data, dict):
        raise CatalogLookupError("Catalog response is not a JSON object")

    model_info = data.get("model") if isinstance(data.get("model"), dict) else {}
    catalog_type = str(model_info.get("type") or "").lower()
    trained_words = data.get("trainedWords")

    return CatalogEntry(
        model_id=data.get("modelId") if isinstance(data.get("modelId"), int) else None,
        version_id=data.get("id") if isinstance(data.get("id"), int) else None,
        name=model_info.get("name") if isinstance(model_info.get("name"), str) else None,
        version_name=data.get("name") if isinstance(data.get("name"), str) else None,
        model_type=CATALOG_TYPE_MAP.get(catalog_type, ModelType.UNKNOWN),
        base_model=data.get("baseModel") if isinstance(data.get("baseModel"), str) else None,
        trigger_words=[w for w in trained_words if isinstance(w, str)] if isinstance(trained_words, list) else [],
        download_url=data.get("downloadUrl") if isinstance(data.get("downloadUrl"), str) else None,
        sha256=_primary_file_sha256(data.get("files")),
    )


class CatalogClient:
    """By-hash lookups against a CivitAI-compatible REST catalog."""

    def __init__(
        self,
        base_url: str = DEFAULT_CATALOG_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        session: Optional[requests.Session] = None,
        api_key: Optional[str] = None,
    ):
        """
        Initialize CatalogClient.

        Args:
            base_url: Catalog API root (no trailing slash needed)
            timeout: Per-request timeout in seconds
            session: Session to reuse; a new one is created if omitted
            api_key: Bearer token for catalogs that require one
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def is_available(self) -> bool:
        """False when the machine is offline; lookups would only time out."""
        return check_internet()

    def lookup_by_hash(self, full_digest: str) -> Optional[CatalogEntry]:
        """
        Look up a model version by the SHA-256 of its file.

        Args:
            full_digest: Full-file SHA-256 hex (any case)

        Returns:
            CatalogEntry, or None if the catalog does not know the digest

        Raises:
            ValueError: If full_digest is empty
            CatalogLookupError: On network failure, an unexpected HTTP
                status or an undecodable response
        """
        if not full_digest or not full_digest.strip():
            raise ValueError("A full SHA-256 digest is required for catalog lookup")

        url = f"{self.base_url}/model-versions/by-hash/{full_digest.strip().upper()}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise CatalogLookupError(f"Network error during catalog lookup: {e}")

        if response.status_code == 404:
            logger.debug(f"Catalog has no entry for {full_digest}")
            return None

        if response.status_code in (401, 403):
            raise CatalogLookupError(
                f"Catalog denied access (HTTP {response.status_code}); an API key may be required"
            )

        if response.status_code != 200:
            raise CatalogLookupError(f"Catalog lookup failed (HTTP {response.status_code})")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise CatalogLookupError(f"Invalid JSON from catalog: {e}")

        return parse_catalog_response(data)


def enrich_model(model: ModelFile, entry: CatalogEntry) -> ModelFile:
    """
    Return a copy of ``model`` with catalog facts merged in.

    Catalog ids, names and download URL are always taken from the entry.
    Classification fields are only filled where local forensics found
    nothing; a header-derived classification is never overridden.
    """
    update: Dict[str, Any] = {
        "catalog_model_id": entry.model_id,
        "catalog_version_id": entry.version_id,
        "catalog_name": entry.name,
        "catalog_base_model": entry.base_model,
        "catalog_download_url": entry.download_url,
        "updated_at": utc_now(),
    }

    if entry.sha256 and not model.expected_digest:
        update["expected_digest"] = entry.sha256

    words = list(model.trigger_words)
    for word in entry.trigger_words:
        if word not in words:
            words.append(word)
    update["trigger_words"] = words

    if model.model_type == ModelType.UNKNOWN and entry.model_type != ModelType.UNKNOWN:
        update["model_type"] = entry.model_type

    if model.architecture == Architecture.UNKNOWN and entry.base_model:
        architecture = lookup_base_model_version(entry.base_model)
        if architecture:
            update["architecture"] = architecture
            update["detected_from"] = "catalog"

    return model.model_copy(update=update, deep=True)
