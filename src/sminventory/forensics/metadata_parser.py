"""
Metadata Parser for sminventory

Turns the free-form ``__metadata__`` map of a safetensors header into typed
values. The raw map is validated once, at the parsing boundary, so every
downstream consumer (classifier, indexer, catalog enrichment) works with a
plain ``Dict[str, str]`` instead of trusting arbitrary JSON.

Two namespaces matter:
    - ``ss_*``: written by kohya-ss style training tools (LoRA training runs)
    - ``modelspec.*``: the Stability AI model-spec convention
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# METADATA KEYS
# =============================================================================

TRAINING_PREFIX = "ss_"
MODELSPEC_PREFIX = "modelspec."

KEY_TAG_FREQUENCY = "ss_tag_frequency"
KEY_BASE_MODEL_VERSION = "ss_base_model_version"
KEY_SD_MODEL_NAME = "ss_sd_model_name"
KEY_MODELSPEC_ARCHITECTURE = "modelspec.architecture"
KEY_MODELSPEC_PRECISION = "modelspec.precision"

# Trigger words kept per dataset in the tag-frequency table
MAX_TRIGGER_WORDS_PER_DATASET = 10

# Order in which base-model declarations are consulted
BASE_MODEL_KEYS = (KEY_BASE_MODEL_VERSION, KEY_SD_MODEL_NAME, KEY_MODELSPEC_ARCHITECTURE)


@dataclass(frozen=True)
class MetadataMap:
    """String-to-string metadata with prefix sub-extraction."""

    entries: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> "MetadataMap":
        """
        Build a MetadataMap from an untrusted ``__metadata__`` value.

        Anything that is not a dict yields an empty map. Non-string keys are
        dropped; numbers and booleans are stringified (some writers emit them
        even though the format only allows strings); nested containers are
        dropped.
        """
        if not isinstance(raw, dict):
            return cls()

        entries: Dict[str, str] = {}
        for key, value in raw.items():
            if not isinstance(key, str):
                continue
            if isinstance(value, str):
                entries[key] = value
            elif isinstance(value, (int, float, bool)):
                entries[key] = str(value)
            else:
                logger.debug(f"Dropping non-scalar metadata value for key {key!r}")
        return cls(entries=entries)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.entries.get(key, default)

    def with_prefix(self, prefix: str) -> Dict[str, str]:
        """Return every entry whose key starts with ``prefix``."""
        return {k: v for k, v in self.entries.items() if k.startswith(prefix)}

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class EmbeddedMetadata:
    """Structured view of a model's embedded metadata."""

    training_info: Dict[str, str] = field(default_factory=dict)
    model_spec: Dict[str, str] = field(default_factory=dict)
    trigger_words: List[str] = field(default_factory=list)
    base_model: Optional[str] = None

    @property
    def combined(self) -> Dict[str, str]:
        """Training and model-spec entries merged, as persisted on a ModelFile."""
        return {**self.training_info, **self.model_spec}

    @property
    def precision(self) -> Optional[str]:
        return self.model_spec.get(KEY_MODELSPEC_PRECISION) or None


def extract_trigger_words(tag_frequency: Optional[str]) -> List[str]:
    """
    Recover trigger words from the ``ss_tag_frequency`` JSON table.

    The table maps dataset names to ``{tag: count}`` objects. The first
    MAX_TRIGGER_WORDS_PER_DATASET tags of each dataset are taken, in the
    order the trainer wrote them, and the result is deduplicated.

    Args:
        tag_frequency: Raw JSON string, or None

    Returns:
        Deduplicated trigger words; empty if the table is absent or undecodable
    """
    if not tag_frequency:
        return []

    try:
        table = json.loads(tag_frequency)
    except (json.JSONDecodeError, TypeError):
        return []

    if not isinstance(table, dict):
        return []

    words: List[str] = []
    seen = set()
    for dataset in table.values():
        if not isinstance(dataset, dict):
            continue
        for tag in list(dataset.keys())[:MAX_TRIGGER_WORDS_PER_DATASET]:
            word = tag.strip()
            if word and word not in seen:
                seen.add(word)
                words.append(word)
    return words


def extract_embedded_metadata(metadata: MetadataMap) -> EmbeddedMetadata:
    """
    Extract training info, model-spec fields, trigger words and base model.

    Pure function; absent fields yield empty results rather than errors.

    Args:
        metadata: Validated metadata map from a safetensors header

    Returns:
        EmbeddedMetadata
    """
    base_model = None
    for key in BASE_MODEL_KEYS:
        value = metadata.get(key)
        if value and value.strip():
            base_model = value.strip()
            break

    return EmbeddedMetadata(
        training_info=metadata.with_prefix(TRAINING_PREFIX),
        model_spec=metadata.with_prefix(MODELSPEC_PREFIX),
        trigger_words=extract_trigger_words(metadata.get(KEY_TAG_FREQUENCY)),
        base_model=base_model,
    )
