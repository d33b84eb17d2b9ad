"""
Record Store

The persistence collaborator the inventory writes through. RecordStore is
the interface; InMemoryRecordStore is a thread-safe reference
implementation used by tests and by callers that do not need durability.

Model records are stored per location (path). Copies of the same bytes on
both tiers are separate records sharing one identity; looking a model up by
identity returns its preferred copy.

Stores hand out copies: a caller mutating a returned record never changes
what the store holds, and never observes a record another thread is still
writing.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .schema import TIER_LOCAL, DependencyReference, ModelFile, WorkflowDescriptor, utc_now

logger = logging.getLogger(__name__)


def location_preference(model: ModelFile) -> Tuple[bool, bool, str]:
    """Sort key over copies of one model: present before missing, local before warehouse, then path."""
    return (model.missing, model.tier != TIER_LOCAL, model.path)


class RecordStore(ABC):
    """Persistence interface for models, workflows and dependency references."""

    # === Models ===

    @abstractmethod
    def get_model(self, model_id: str) -> Optional[ModelFile]:
        """Preferred copy (see location_preference) of the model with this identity."""

    @abstractmethod
    def get_model_by_path(self, path: str) -> Optional[ModelFile]:
        ...

    @abstractmethod
    def list_models(self, include_missing: bool = False, tier: Optional[str] = None) -> List[ModelFile]:
        ...

    @abstractmethod
    def save_model(self, model: ModelFile) -> ModelFile:
        """
        Insert or update the record for ``model.path``.

        An update keeps the stored creation time. Records at other paths are
        never touched, even when they share the identity.
        """

    @abstractmethod
    def mark_model_missing(self, path: str, when: Optional[datetime] = None) -> Optional[ModelFile]:
        """Soft-mark the record whose file vanished from ``path``. Records are never hard-deleted."""

    # === Workflows ===

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDescriptor]:
        ...

    @abstractmethod
    def get_workflow_by_path(self, path: str) -> Optional[WorkflowDescriptor]:
        ...

    @abstractmethod
    def list_workflows(self) -> List[WorkflowDescriptor]:
        ...

    @abstractmethod
    def save_workflow(self, workflow: WorkflowDescriptor) -> WorkflowDescriptor:
        ...

    # === Dependency references ===

    @abstractmethod
    def get_dependencies(self, workflow_id: str) -> List[DependencyReference]:
        ...

    @abstractmethod
    def replace_dependencies(self, workflow_id: str, references: List[DependencyReference]) -> List[DependencyReference]:
        """Delete every reference owned by the workflow and store the given ones."""


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed RecordStore guarded by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._models: Dict[str, ModelFile] = {}  # keyed by path
        self._workflows: Dict[str, WorkflowDescriptor] = {}
        self._dependencies: Dict[str, List[DependencyReference]] = {}

    def get_model(self, model_id: str) -> Optional[ModelFile]:
        with self._lock:
            copies = [m for m in self._models.values() if m.identity == model_id]
            if not copies:
                return None
            return min(copies, key=location_preference).model_copy(deep=True)

    def get_model_by_path(self, path: str) -> Optional[ModelFile]:
        with self._lock:
            model = self._models.get(path)
            return model.model_copy(deep=True) if model else None

    def list_models(self, include_missing: bool = False, tier: Optional[str] = None) -> List[ModelFile]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for m in sorted(self._models.values(), key=lambda m: m.path)
                if (include_missing or not m.missing) and (tier is None or m.tier == tier)
            ]

    def save_model(self, model: ModelFile) -> ModelFile:
        stored = model.model_copy(deep=True)

        with self._lock:
            previous = self._models.get(stored.path)
            if previous is not None:
                stored.created_at = previous.created_at
                if previous.identity != stored.identity:
                    logger.debug(f"Identity of {stored.path} changed: {previous.identity} -> {stored.identity}")

            self._models[stored.path] = stored
            return stored.model_copy(deep=True)

    def mark_model_missing(self, path: str, when: Optional[datetime] = None) -> Optional[ModelFile]:
        with self._lock:
            model = self._models.get(path)
            if model is None:
                return None
            if not model.missing:
                model.missing = True
                model.missing_since = when or utc_now()
                model.updated_at = utc_now()
            return model.model_copy(deep=True)

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDescriptor]:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            return workflow.model_copy(deep=True) if workflow else None

    def get_workflow_by_path(self, path: str) -> Optional[WorkflowDescriptor]:
        with self._lock:
            for workflow in self._workflows.values():
                if workflow.path == path:
                    return workflow.model_copy(deep=True)
            return None

    def list_workflows(self) -> List[WorkflowDescriptor]:
        with self._lock:
            return [w.model_copy(deep=True) for w in sorted(self._workflows.values(), key=lambda w: w.path)]

    def save_workflow(self, workflow: WorkflowDescriptor) -> WorkflowDescriptor:
        stored = workflow.model_copy(deep=True)
        with self._lock:
            self._workflows[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_dependencies(self, workflow_id: str) -> List[DependencyReference]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._dependencies.get(workflow_id, [])]

    def replace_dependencies(self, workflow_id: str, references: List[DependencyReference]) -> List[DependencyReference]:
        stored = [r.model_copy(deep=True) for r in references]
        for ref in stored:
            if ref.workflow_id != workflow_id:
                raise ValueError(f"Reference {ref.id} belongs to workflow {ref.workflow_id}, not {workflow_id}")
        with self._lock:
            self._dependencies[workflow_id] = stored
            return [r.model_copy(deep=True) for r in stored]
