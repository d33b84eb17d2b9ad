"""Tests for workflow scanning and resolution against a store"""

import json

import pytest

from sminventory.forensics import WorkflowParseError
from sminventory.inventory import DependencyStatus, WorkflowStatus
from sminventory.workflows import (
    find_workflow_files,
    resolve_all_workflows,
    resolve_workflow,
    scan_workflow_file,
    scan_workflows,
)
from sminventory.workflows.service import workflow_display_name

from conftest import ui_workflow

GB = 1024 ** 3
MB = 1024 ** 2

SDXL_WORKFLOW = ui_workflow(
    [
        (1, "CheckpointLoaderSimple", ["sd_xl_base_1.0.safetensors"]),
        (2, "LoraLoader", ["detail.safetensors", 0.8, 0.8]),
        (3, "VAELoader", ["sdxl_vae.safetensors"]),
        (4, "KSampler", [42, "fixed", 25, 7.0, "euler", "normal", 1.0]),
        (5, "LoraLoader", [""]),
    ],
    extra={"author": "someone"},
)


def write_workflow(directory, name, document):
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document) if not isinstance(document, str) else document)
    return str(path)


@pytest.fixture
def sdxl_inventory(store, model_factory):
    store.save_model(model_factory(
        "sd_xl_base_1.0.safetensors", model_type="checkpoint", architecture="SDXL",
        precision="fp16", size_bytes=6 * GB,
    ))
    store.save_model(model_factory(
        "detail.safetensors", model_type="lora", architecture="SDXL", precision="fp16", size_bytes=200 * MB,
    ))
    return store


class TestScanWorkflowFile:
    """Test parsing one workflow into the store."""

    def test_descriptor_and_references(self, tmp_path, store):
        path = write_workflow(tmp_path, "sdxl_portrait-v2.json", SDXL_WORKFLOW)

        workflow = scan_workflow_file(path, store)

        assert workflow.name == "sdxl portrait v2"
        assert workflow.status == WorkflowStatus.NEW
        assert workflow.total_dependencies == 3
        assert workflow.missing_count == 3
        assert len(workflow.parse_warnings) == 1
        assert workflow.summary["steps"] == 25
        assert workflow.summary["author"] == "someone"
        references = store.get_dependencies(workflow.id)
        assert [r.model_name for r in references] == [
            "sd_xl_base_1.0.safetensors", "detail.safetensors", "sdxl_vae.safetensors",
        ]
        assert all(r.status == DependencyStatus.UNRESOLVED for r in references)

    def test_rescan_keeps_identity(self, tmp_path, store):
        path = write_workflow(tmp_path, "a.json", SDXL_WORKFLOW)
        first = scan_workflow_file(path, store)

        write_workflow(tmp_path, "a.json", ui_workflow([(1, "VAELoader", ["other_vae.safetensors"])]))
        second = scan_workflow_file(path, store)

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert [r.model_name for r in store.get_dependencies(first.id)] == ["other_vae.safetensors"]
        assert len(store.list_workflows()) == 1

    def test_unreadable_workflow_raises_with_path(self, tmp_path, store):
        path = write_workflow(tmp_path, "broken.json", "{not json")

        with pytest.raises(WorkflowParseError) as excinfo:
            scan_workflow_file(path, store)

        assert excinfo.value.path == path

    def test_document_without_nodes_raises(self, tmp_path, store):
        path = write_workflow(tmp_path, "empty.json", {"version": 1})

        with pytest.raises(WorkflowParseError, match="no node collection"):
            scan_workflow_file(path, store)


class TestScanWorkflows:
    """Test scanning workflow directories."""

    def test_errors_are_reported_and_the_rest_scanned(self, tmp_path, store):
        write_workflow(tmp_path, "good.json", SDXL_WORKFLOW)
        write_workflow(tmp_path, "nested/bad.json", "[1, 2")
        write_workflow(tmp_path, ".cache/hidden.json", SDXL_WORKFLOW)

        report = scan_workflows([str(tmp_path)], store)

        assert report.scanned_count == 2
        assert report.new_workflows == 1
        assert report.total_dependencies == 3
        assert len(report.errors) == 1
        assert "bad.json" in report.errors[0]

    def test_second_scan_counts_updates(self, tmp_path, store):
        write_workflow(tmp_path, "good.json", SDXL_WORKFLOW)
        scan_workflows([str(tmp_path)], store)

        report = scan_workflows([str(tmp_path)], store)

        assert (report.new_workflows, report.updated_workflows) == (0, 1)

    def test_find_workflow_files_missing_root(self, tmp_path):
        assert find_workflow_files(str(tmp_path / "nope")) == []

    def test_display_name(self):
        assert workflow_display_name("flux_dev-upscale.JSON") == "flux dev upscale"


class TestResolveWorkflow:
    """Test resolving a stored workflow end to end."""

    def test_two_local_and_one_missing(self, tmp_path, sdxl_inventory):
        workflow = scan_workflow_file(write_workflow(tmp_path, "a.json", SDXL_WORKFLOW), sdxl_inventory)

        resolved = resolve_workflow(workflow.id, sdxl_inventory)

        assert resolved.status == WorkflowStatus.MISSING_ITEMS
        assert (resolved.total_dependencies, resolved.resolved_local, resolved.missing_count) == (3, 2, 1)
        assert resolved.total_size_bytes == 6 * GB + 200 * MB + 320 * MB
        assert resolved.estimated_vram_gb == pytest.approx(13.5)
        assert resolved.scanned_at is not None

        statuses = {r.model_name: r.status for r in sdxl_inventory.get_dependencies(workflow.id)}
        assert statuses == {
            "sd_xl_base_1.0.safetensors": DependencyStatus.RESOLVED_LOCAL,
            "detail.safetensors": DependencyStatus.RESOLVED_LOCAL,
            "sdxl_vae.safetensors": DependencyStatus.MISSING,
        }
        assert sdxl_inventory.get_workflow(workflow.id).status == WorkflowStatus.MISSING_ITEMS

    def test_ready_once_model_arrives(self, tmp_path, sdxl_inventory, model_factory):
        workflow = scan_workflow_file(write_workflow(tmp_path, "a.json", SDXL_WORKFLOW), sdxl_inventory)
        sdxl_inventory.save_model(model_factory("sdxl_vae.safetensors", tier="warehouse", model_type="vae"))

        first = resolve_workflow(workflow.id, sdxl_inventory)
        second = resolve_workflow(workflow.id, sdxl_inventory)

        assert first.status == WorkflowStatus.READY_LOCAL
        assert second.status == first.status
        assert second.resolved_warehouse == 1

    def test_copy_on_both_tiers_resolves_local(self, tmp_path, sdxl_inventory, model_factory):
        for tier in ("local", "warehouse"):
            sdxl_inventory.save_model(model_factory(
                "sdxl_vae.safetensors", tier=tier, model_type="vae", size_bytes=320 * MB, full_digest="EE" * 32,
            ))
        workflow = scan_workflow_file(write_workflow(tmp_path, "a.json", SDXL_WORKFLOW), sdxl_inventory)

        resolved = resolve_workflow(workflow.id, sdxl_inventory)

        assert resolved.status == WorkflowStatus.READY_LOCAL
        assert (resolved.resolved_local, resolved.resolved_warehouse) == (3, 0)
        assert resolved.total_size_bytes == 6 * GB + 200 * MB + 320 * MB

    def test_unknown_workflow_raises(self, store):
        with pytest.raises(KeyError):
            resolve_workflow("does-not-exist", store)

    def test_resolve_all(self, tmp_path, sdxl_inventory):
        write_workflow(tmp_path, "a.json", SDXL_WORKFLOW)
        scan_workflows([str(tmp_path)], sdxl_inventory)

        results = resolve_all_workflows(sdxl_inventory)

        assert [w.status for w in results.values()] == [WorkflowStatus.MISSING_ITEMS]
