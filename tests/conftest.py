"""Pytest configuration and fixtures"""

import hashlib
import json
import struct

import pytest

from sminventory.inventory import InMemoryRecordStore, ModelFile

DTYPE_SIZES = {"F64": 8, "F32": 4, "F16": 2, "BF16": 2, "F8_E4M3": 1, "I8": 1, "U8": 1}


def build_safetensors(tensors=None, metadata=None, pad_to=0):
    """
    Bytes of a minimal safetensors file.

    ``tensors`` maps names to (dtype, shape); payload bytes are zeros. The
    file is padded with zeros up to ``pad_to`` bytes.
    """
    tensors = tensors or {}
    header = {}
    if metadata is not None:
        header["__metadata__"] = metadata

    offset = 0
    for name, (dtype, shape) in tensors.items():
        count = 1
        for dim in shape:
            count *= dim
        nbytes = count * DTYPE_SIZES[dtype]
        header[name] = {"dtype": dtype, "shape": list(shape), "data_offsets": [offset, offset + nbytes]}
        offset += nbytes

    header_bytes = json.dumps(header).encode("utf-8")
    data = struct.pack("<Q", len(header_bytes)) + header_bytes + b"\x00" * offset
    if len(data) < pad_to:
        data += b"\x00" * (pad_to - len(data))
    return data


@pytest.fixture
def make_safetensors(tmp_path):
    """Write a synthetic safetensors file under tmp_path; returns its path as str."""

    def _make(relative_path, tensors=None, metadata=None, pad_to=2048):
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_safetensors(tensors, metadata, pad_to))
        return str(path)

    return _make


@pytest.fixture
def store():
    """Create a fresh InMemoryRecordStore for each test."""
    return InMemoryRecordStore()


@pytest.fixture
def model_factory():
    """Build ModelFile records without touching disk."""

    def _make(filename, tier="local", path=None, full_digest=None, **kwargs):
        path = path or f"/models/{tier}/{filename}"
        return ModelFile(
            path=path,
            filename=filename,
            tier=tier,
            full_digest=full_digest or hashlib.sha256(f"{tier}:{path}".encode()).hexdigest().upper(),
            **kwargs,
        )

    return _make


SDXL_CHECKPOINT_TENSORS = {
    "conditioner.embedders.1.model.transformer.resblocks.0.attn.in_proj_weight": ("F16", [4]),
    "model.diffusion_model.input_blocks.0.0.weight": ("F16", [4]),
}

SD15_CHECKPOINT_TENSORS = {
    "model.diffusion_model.input_blocks.0.0.weight": ("F16", [4]),
    "cond_stage_model.transformer.text_model.embeddings.position_ids": ("F16", [4]),
}

FLUX_TENSORS = {
    "double_blocks.0.img_attn.qkv.weight": ("BF16", [4]),
    "single_blocks.0.linear1.weight": ("BF16", [4]),
}

SD15_LORA_TENSORS = {
    "lora_unet_down_blocks_0_attentions_0_proj_in.lora_down.weight": ("F16", [4]),
    "lora_te_text_model_encoder_layers_0_mlp_fc1.lora_up.weight": ("F16", [4]),
}

VAE_TENSORS = {
    "encoder.down.0.block.0.conv1.weight": ("F32", [4]),
    "decoder.up.0.block.0.conv1.weight": ("F32", [4]),
}


def ui_workflow(nodes, links=None, extra=None):
    """A ComfyUI UI-export document from (id, type, widgets_values) tuples."""
    document = {
        "last_node_id": len(nodes),
        "last_link_id": len(links or []),
        "nodes": [{"id": node_id, "type": node_type, "widgets_values": widgets} for node_id, node_type, widgets in nodes],
        "links": links or [],
        "version": 0.4,
    }
    if extra is not None:
        document["extra"] = extra
    return document
