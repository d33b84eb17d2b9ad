"""Tests for safetensors and GGUF header reading"""

import struct

import numpy as np
import pytest
from gguf import GGUFWriter

from sminventory.forensics import (
    CorruptHeaderError,
    HeaderNotFoundError,
    classify_header,
    read_gguf_header,
    read_safetensors_header,
    try_read_header,
)
from sminventory.forensics.header_reader import MAX_SAFETENSORS_HEADER_SIZE, is_valid_safetensors

FLUX_HEADER_JSON = (
    b'{"__metadata__":{"modelspec.architecture":"flux"},'
    b'"t1":{"dtype":"F16","shape":[1],"data_offsets":[0,2]}}'
)


def _write_raw(path, header_bytes, payload=b"", declared_length=None):
    length = len(header_bytes) if declared_length is None else declared_length
    path.write_bytes(struct.pack("<Q", length) + header_bytes + payload)
    return str(path)


class TestSafetensorsHeader:
    """Test parsing of well-formed headers."""

    def test_modelspec_flux_header_classifies_as_flux(self, tmp_path):
        """A length-prefixed header declaring flux classifies as Flux with high confidence."""
        path = _write_raw(tmp_path / "model.safetensors", FLUX_HEADER_JSON, payload=b"\x00\x00")

        header = read_safetensors_header(path)
        result = classify_header(header, file_size=len(FLUX_HEADER_JSON) + 10)

        assert header.header_size == len(FLUX_HEADER_JSON)
        assert header.tensor_names == ["t1"]
        assert header.metadata.get("modelspec.architecture") == "flux"
        assert result.architecture == "Flux"
        assert result.confidence == "high"

    def test_tensor_entries_are_typed(self, make_safetensors):
        """Test tensor descriptors expose dtype, shape and offsets."""
        path = make_safetensors("a.safetensors", {"w": ("F32", [2, 3]), "b": ("F16", [3])})

        header = read_safetensors_header(path)

        assert header.tensor_count == 2
        assert header.tensors["w"].shape == (2, 3)
        assert header.tensors["w"].data_offsets == (0, 24)
        assert header.tensors["w"].n_elements == 6
        assert header.tensors["b"].nbytes == 6
        assert header.dtype_counts() == {"F32": 1, "F16": 1}

    def test_non_string_metadata_values_dropped(self, make_safetensors):
        """Test nested metadata values never reach consumers."""
        path = make_safetensors(
            "a.safetensors", {"w": ("F16", [1])},
            metadata={"ss_network_dim": 32, "nested": {"a": 1}, "ss_output_name": "x"},
        )

        header = read_safetensors_header(path)

        assert header.metadata.get("ss_network_dim") == "32"
        assert header.metadata.get("ss_output_name") == "x"
        assert "nested" not in header.metadata

    def test_is_valid_safetensors(self, make_safetensors, tmp_path):
        """Test validity requires a parseable header with tensors."""
        good = make_safetensors("good.safetensors", {"w": ("F16", [1])})
        empty = make_safetensors("empty.safetensors", {})

        assert is_valid_safetensors(good)
        assert not is_valid_safetensors(empty)
        assert not is_valid_safetensors(str(tmp_path / "nope.safetensors"))


class TestCorruptHeaders:
    """Test rejection of implausible or undecodable headers."""

    def test_huge_declared_length_rejected(self, tmp_path):
        """A declared length of 500,000,000 is rejected before any allocation."""
        path = _write_raw(tmp_path / "bad.safetensors", b"{}", declared_length=500_000_000)

        with pytest.raises(CorruptHeaderError) as exc_info:
            read_safetensors_header(path)

        assert exc_info.value.header_length == 500_000_000
        assert str(MAX_SAFETENSORS_HEADER_SIZE) in str(exc_info.value)

    def test_length_past_end_of_file_rejected(self, tmp_path):
        """Test a length within the limit but beyond the file is corrupt."""
        path = _write_raw(tmp_path / "short.safetensors", b"{}", declared_length=4096)

        with pytest.raises(CorruptHeaderError):
            read_safetensors_header(path)

    def test_zero_length_rejected(self, tmp_path):
        """Test a zero header length is corrupt."""
        path = _write_raw(tmp_path / "zero.safetensors", b"", declared_length=0, payload=b"\x00" * 16)

        with pytest.raises(CorruptHeaderError):
            read_safetensors_header(path)

    def test_undecodable_json_rejected(self, tmp_path):
        """Test invalid JSON is corrupt."""
        path = _write_raw(tmp_path / "junk.safetensors", b"{not json", payload=b"\x00" * 8)

        with pytest.raises(CorruptHeaderError):
            read_safetensors_header(path)

    def test_file_shorter_than_prefix(self, tmp_path):
        """Test a file under 8 bytes is corrupt."""
        path = tmp_path / "tiny.safetensors"
        path.write_bytes(b"\x01\x02")

        with pytest.raises(CorruptHeaderError):
            read_safetensors_header(str(path))

    def test_invalid_tensor_entry_rejected(self, tmp_path):
        """Test a tensor entry without offsets is corrupt."""
        path = _write_raw(tmp_path / "t.safetensors", b'{"w":{"dtype":"F16","shape":[1]}}')

        with pytest.raises(CorruptHeaderError):
            read_safetensors_header(path)

    def test_missing_file(self, tmp_path):
        """Test a missing file raises HeaderNotFoundError, also a FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            read_safetensors_header(str(tmp_path / "missing.safetensors"))


class TestTryReadHeader:
    """Test the non-raising wrapper."""

    def test_returns_header_on_success(self, make_safetensors):
        result = try_read_header(make_safetensors("ok.safetensors", {"w": ("F16", [1])}))
        assert result.ok
        assert result.error is None

    def test_returns_error_on_corruption(self, tmp_path):
        path = _write_raw(tmp_path / "bad.safetensors", b"{}", declared_length=500_000_000)

        result = try_read_header(path)

        assert not result.ok
        assert isinstance(result.error, CorruptHeaderError)
        assert not result.not_found

    def test_returns_not_found(self, tmp_path):
        result = try_read_header(str(tmp_path / "gone.safetensors"))
        assert isinstance(result.error, HeaderNotFoundError)
        assert result.not_found


class TestGgufHeader:
    """Test GGUF inspection through gguf.GGUFReader."""

    def test_reads_architecture_and_dominant_type(self, tmp_path):
        """Test architecture and quantization type come from the container."""
        path = str(tmp_path / "flux1-dev-test.gguf")
        writer = GGUFWriter(path, "flux")
        writer.add_tensor("double_blocks.0.img_attn.qkv.weight", np.ones((8, 8), dtype=np.float32))
        writer.add_tensor("final_layer.bias", np.ones((8,), dtype=np.float32))
        writer.write_header_to_file()
        writer.write_kv_data_to_file()
        writer.write_tensors_to_file()
        writer.close()

        info = read_gguf_header(path)

        assert info.architecture == "flux"
        assert info.quantization_type == "F32"
        assert info.tensor_count == 2
        assert info.fields["general.architecture"] == "flux"

    def test_garbage_is_corrupt(self, tmp_path):
        path = tmp_path / "broken.gguf"
        path.write_bytes(b"NOTGGUF" + b"\x00" * 64)

        with pytest.raises(CorruptHeaderError):
            read_gguf_header(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(HeaderNotFoundError):
            read_gguf_header(str(tmp_path / "missing.gguf"))
