"""Tests for per-file forensic analysis"""

import struct

import pytest

from sminventory.forensics import ModelFileNotFoundError, analyze_model, compute_full_digest, compute_partial_digest

from conftest import SD15_LORA_TENSORS, SDXL_CHECKPOINT_TENSORS


class TestAnalyzeModel:
    """Test header + classify + digest in one pass."""

    def test_standard_level_computes_partial_digest(self, make_safetensors):
        path = make_safetensors("checkpoints/sdxl_base.safetensors", SDXL_CHECKPOINT_TENSORS)

        analysis = analyze_model(path)

        assert analysis.detection.architecture == "SDXL"
        assert analysis.precision == "fp16"
        assert analysis.integrity_status == "valid"
        assert analysis.partial_digest == compute_partial_digest(path)
        assert analysis.full_digest is None

    def test_full_level_computes_both_digests(self, make_safetensors):
        path = make_safetensors("a.safetensors", SDXL_CHECKPOINT_TENSORS)

        analysis = analyze_model(path, level="full")

        assert analysis.full_digest == compute_full_digest(path)
        assert analysis.partial_digest == compute_partial_digest(path)

    def test_quick_level_computes_no_digest(self, make_safetensors):
        analysis = analyze_model(make_safetensors("a.safetensors", SDXL_CHECKPOINT_TENSORS), level="quick")
        assert analysis.partial_digest is None
        assert analysis.full_digest is None

    def test_embedded_metadata_and_trigger_words(self, make_safetensors):
        path = make_safetensors(
            "loras/style.safetensors", SD15_LORA_TENSORS,
            metadata={"ss_tag_frequency": '{"1_ds": {"pastel": 4, "soft light": 2}}', "ss_output_name": "style"},
        )

        analysis = analyze_model(path)

        assert analysis.detection.model_type == "lora"
        assert analysis.embedded.trigger_words == ["pastel", "soft light"]
        assert analysis.embedded.training_info["ss_output_name"] == "style"

    def test_corrupt_header_is_reported_not_raised(self, tmp_path):
        """A damaged file degrades to corrupt instead of failing the caller."""
        path = tmp_path / "loras" / "broken.safetensors"
        path.parent.mkdir()
        path.write_bytes(struct.pack("<Q", 500_000_000) + b"\x00" * 2048)

        analysis = analyze_model(str(path))

        assert analysis.integrity_status == "corrupt"
        assert "Corrupt header" in analysis.header_error
        assert analysis.detection.model_type == "lora"

    def test_expected_digest_mismatch_is_corrupt(self, make_safetensors):
        path = make_safetensors("a.safetensors", SDXL_CHECKPOINT_TENSORS)

        analysis = analyze_model(path, level="full", expected_digest="11" * 32)

        assert analysis.integrity_status == "corrupt"
        assert analysis.validation.reason.name == "DIGEST_MISMATCH"

    def test_tiny_file_is_incomplete(self, tmp_path):
        path = tmp_path / "model.ckpt"
        path.write_bytes(b"\x00" * 100)

        analysis = analyze_model(str(path), level="quick")

        assert analysis.integrity_status == "incomplete"
        assert analysis.precision == "unknown"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ModelFileNotFoundError):
            analyze_model(str(tmp_path / "gone.safetensors"))
