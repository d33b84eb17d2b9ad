"""Tests for VRAM and missing-model size estimation"""

import pytest

from sminventory.workflows import (
    VramEstimate,
    VramItem,
    check_vram_fit,
    estimate_missing_model_size,
    estimate_workflow_vram,
    format_file_size,
    recommend_precision,
)
from sminventory.workflows.vram_estimator import architecture_from_name, estimate_model_vram

GB = 1024 ** 3
MB = 1024 ** 2


class TestEstimateModelVram:
    """Test per-model factors."""

    def test_scaled_and_flat_factors(self):
        assert estimate_model_vram("checkpoint", "fp16", 2 * GB) == pytest.approx(2.2)
        assert estimate_model_vram("checkpoint", "fp8", 2 * GB) == pytest.approx(1.2)
        assert estimate_model_vram("vae", "fp32", 5 * GB) == pytest.approx(1.0)

    def test_unlisted_precision_and_type_fall_back(self):
        assert estimate_model_vram("lora", "bf16", GB) == pytest.approx(0.15)
        assert estimate_model_vram("mystery", "fp16", GB) == pytest.approx(1.1)


class TestEstimateWorkflowVram:
    """Test workflow totals, floor, overhead and warnings."""

    def test_sdxl_checkpoint_above_floor(self):
        estimate = estimate_workflow_vram([VramItem("checkpoint", "fp16", 6 * GB, "SDXL")])

        assert estimate.base_gb == pytest.approx(8.1)
        assert estimate.with_overhead_gb == pytest.approx(10.5)
        assert estimate.peak_gb == pytest.approx(12.6)
        assert estimate.architecture == "SDXL"
        assert estimate.fits == {16: True, 24: True, 48: True, 80: True}
        assert estimate.warnings == []

    def test_small_sum_raised_to_floor_fraction(self):
        """A sum below the architecture floor is raised to 80% of the floor."""
        estimate = estimate_workflow_vram([VramItem("checkpoint", "fp16", GB, "SDXL")])

        assert estimate.base_gb == pytest.approx(6.4)
        assert estimate.peak_gb == pytest.approx(10.0)

    def test_empty_workflow_uses_unknown_floor(self):
        estimate = estimate_workflow_vram([])

        assert estimate.base_gb == pytest.approx(6.4)
        assert estimate.architecture == "unknown"

    def test_last_backbone_sets_architecture(self):
        estimate = estimate_workflow_vram([
            VramItem("checkpoint", "fp16", GB, "SD15"),
            VramItem("lora", "fp16", 200 * MB, "SDXL"),
            VramItem("diffusion_model", "fp8", GB, "Flux"),
        ])

        assert estimate.architecture == "Flux"

    def test_breakdown_groups_by_type(self):
        estimate = estimate_workflow_vram([
            VramItem("lora", "fp16", GB),
            VramItem("lora", "fp16", GB),
            VramItem("vae", "fp16", 300 * MB),
        ])

        breakdown = {b.model_type: (b.count, b.vram_gb) for b in estimate.breakdown}
        assert breakdown == {"lora": (2, pytest.approx(0.3)), "vae": (1, pytest.approx(0.5))}

    def test_lora_and_controlnet_warnings(self):
        items = [VramItem("lora", "fp16", 100 * MB) for _ in range(4)]
        items += [VramItem("controlnet", "fp16", 100 * MB) for _ in range(3)]

        warnings = estimate_workflow_vram(items).warnings

        assert "4 LoRAs may cause instability or slow generation" in warnings
        assert "3 ControlNets will significantly increase VRAM usage" in warnings

    def test_gpu_class_warnings(self):
        mid = estimate_workflow_vram([VramItem("checkpoint", "fp16", 10 * GB, "SDXL")])
        large = estimate_workflow_vram([VramItem("diffusion_model", "fp16", 22 * GB, "Flux")])

        assert mid.warnings == ["This workflow may not fit on a 16GB GPU"]
        assert mid.fits[24] and not mid.fits[16]
        assert large.warnings == ["This workflow may require a high-VRAM GPU (48GB+)"]
        assert large.fits[48]


class TestRecommendations:
    """Test precision recommendations and per-GPU fit checks."""

    @pytest.mark.parametrize("vram, expected", [(12, "fp16"), (8, "fp8"), (7.9, "gguf")])
    def test_recommend_precision_sdxl(self, vram, expected):
        assert recommend_precision(vram, "SDXL") == expected

    def test_recommend_precision_flux_floor(self):
        assert recommend_precision(16, "Flux") == "fp8"
        assert recommend_precision(16) == "fp16"

    @pytest.mark.parametrize("available, fits, recommendation", [
        (16, True, "Good fit with comfortable margin"),
        (12.5, True, "Should fit but may be tight - close other GPU applications"),
        (10.5, False, "Consider using fp8 precision or removing some LoRAs"),
        (7, False, "Consider using GGUF quantized models or a cloud GPU"),
        (4, False, "This workflow requires significantly more VRAM - use cloud deployment"),
    ])
    def test_check_vram_fit(self, available, fits, recommendation):
        estimate = VramEstimate(base_gb=6.4, with_overhead_gb=8.3, peak_gb=10.0)

        verdict = check_vram_fit(estimate, available)

        assert verdict.fits is fits
        assert verdict.recommendation == recommendation
        assert verdict.margin_gb == pytest.approx(available - 10.0)


class TestMissingModelSize:
    """Test size estimates for models the inventory lacks."""

    def test_plain_lora(self):
        assert estimate_missing_model_size("lora", "detail.safetensors") == 150 * MB

    def test_architecture_hint_in_name(self):
        assert estimate_missing_model_size("checkpoint", "sd_xl_base_1.0.safetensors") == 6617 * MB
        assert estimate_missing_model_size("lora", "flux_realism_lora.safetensors") == 300 * MB

    def test_precision_scales_size(self):
        assert estimate_missing_model_size("checkpoint", "flux1-dev-fp8.safetensors") == 8 * GB
        assert estimate_missing_model_size("clip", "t5xxl_fp16.safetensors") == 9500 * MB
        assert estimate_missing_model_size("clip", "t5xxl_fp8_e4m3fn.safetensors") == 4750 * MB

    def test_gguf_scales_by_bits_per_weight(self):
        assert estimate_missing_model_size("diffusion_model", "flux1-dev-Q4_K_S.gguf") == int(22 * GB * 4.58 / 16)

    def test_unknown_type_uses_default(self):
        assert estimate_missing_model_size("mystery", "thing.bin") == 2 * GB

    def test_architecture_from_name(self):
        assert architecture_from_name("ponyDiffusionV6XL.safetensors") == "Pony"
        assert architecture_from_name("SDXL\\juggernautXL_v9.safetensors") == "SDXL"
        assert architecture_from_name("model.safetensors") is None


class TestFormatFileSize:
    @pytest.mark.parametrize("size, expected", [
        (0, "0.0B"),
        (None, "0.0B"),
        (512, "512.0B"),
        (1536, "1.5KB"),
        (int(6.5 * GB), "6.5GB"),
        (3 * 1024 ** 4, "3.0TB"),
    ])
    def test_format(self, size, expected):
        assert format_file_size(size) == expected
