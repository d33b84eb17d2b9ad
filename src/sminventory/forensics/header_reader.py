"""
Binary Header Reader

Reads the metadata header of a model container without touching the tensor
payload. Two containers are understood:

- Safetensors: [8 bytes: header length N (u64 LE)] [N bytes: UTF-8 JSON] [tensor data]
- GGUF: magic + key/value block + tensor descriptors, read through ``gguf.GGUFReader``
  (memory-mapped; tensor data is never loaded)

The raising readers are used by tests and callers that want exceptions;
pipeline code goes through try_read_header(), which always returns a typed
HeaderReadResult instead of letting a failure escape.
"""

import json
import logging
import os
import struct
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from gguf import GGUFReader, GGUFValueType

from .exceptions import CorruptHeaderError, HeaderNotFoundError, HeaderReadError
from .metadata_parser import MetadataMap

logger = logging.getLogger(__name__)


# ============================================================================
# FORMAT CONSTANTS
# ============================================================================

HEADER_LENGTH_PREFIX_SIZE = 8

# Security/sanity limit: anything larger is treated as corrupt before allocation
MAX_SAFETENSORS_HEADER_SIZE = 104857600  # 100MB

METADATA_KEY = "__metadata__"

# GGUF keys consulted for classification
GGUF_ARCHITECTURE_KEY = "general.architecture"


# ============================================================================
# SAFETENSORS
# ============================================================================

@dataclass(frozen=True)
class TensorInfo:
    """Descriptor of one tensor in a safetensors header."""

    name: str
    dtype: str
    shape: Tuple[int, ...]
    data_offsets: Tuple[int, int]

    @property
    def n_elements(self) -> int:
        count = 1
        for dim in self.shape:
            count *= dim
        return count

    @property
    def nbytes(self) -> int:
        return self.data_offsets[1] - self.data_offsets[0]


@dataclass
class SafetensorsHeader:
    """Parsed safetensors header."""

    tensors: Dict[str, TensorInfo]
    metadata: MetadataMap = field(default_factory=MetadataMap)
    header_size: int = 0

    @property
    def tensor_names(self) -> List[str]:
        return list(self.tensors)

    @property
    def tensor_count(self) -> int:
        return len(self.tensors)

    def dtype_counts(self) -> Dict[str, int]:
        """Number of tensors per dtype, e.g. {"F16": 1130, "F32": 4}."""
        return dict(Counter(t.dtype for t in self.tensors.values()))

    def __repr__(self) -> str:
        return f"SafetensorsHeader({self.tensor_count} tensors, {len(self.metadata)} metadata keys)"


def _parse_tensor_entry(name: str, entry: Any, path: Optional[str]) -> TensorInfo:
    if not isinstance(entry, dict):
        raise CorruptHeaderError(f"tensor {name!r} is not an object", path=path)

    dtype = entry.get("dtype")
    shape = entry.get("shape")
    offsets = entry.get("data_offsets")

    if not isinstance(dtype, str):
        raise CorruptHeaderError(f"tensor {name!r} has no dtype", path=path)
    if not isinstance(shape, list) or not all(isinstance(d, int) and d >= 0 for d in shape):
        raise CorruptHeaderError(f"tensor {name!r} has an invalid shape", path=path)
    if (
        not isinstance(offsets, list)
        or len(offsets) != 2
        or not all(isinstance(o, int) for o in offsets)
        or offsets[0] > offsets[1]
    ):
        raise CorruptHeaderError(f"tensor {name!r} has invalid data_offsets", path=path)

    return TensorInfo(name=name, dtype=dtype, shape=tuple(shape), data_offsets=(offsets[0], offsets[1]))


def parse_header_bytes(header_bytes: bytes, path: Optional[str] = None) -> SafetensorsHeader:
    """
    Parse the JSON portion of a safetensors header.

    Args:
        header_bytes: The N bytes following the length prefix
        path: Source path, for error context only

    Returns:
        SafetensorsHeader

    Raises:
        CorruptHeaderError: If the bytes are not a UTF-8 JSON object of tensor entries
    """
    try:
        raw = json.loads(header_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptHeaderError(f"header is not valid UTF-8 JSON ({e})", path=path,
                                 header_length=len(header_bytes))

    if not isinstance(raw, dict):
        raise CorruptHeaderError("header JSON is not an object", path=path,
                                 header_length=len(header_bytes))

    metadata = MetadataMap.from_raw(raw.get(METADATA_KEY))
    tensors = {
        name: _parse_tensor_entry(name, entry, path)
        for name, entry in raw.items()
        if name != METADATA_KEY
    }
    return SafetensorsHeader(tensors=tensors, metadata=metadata, header_size=len(header_bytes))


def read_safetensors_header(path: str) -> SafetensorsHeader:
    """
    Read and parse the JSON header of a safetensors file.

    Only the length prefix and the header itself are read. The declared
    length is checked against MAX_SAFETENSORS_HEADER_SIZE and against the
    file size before any buffer is allocated.

    Args:
        path: Path to the .safetensors file

    Returns:
        SafetensorsHeader

    Raises:
        HeaderNotFoundError: If the file does not exist
        CorruptHeaderError: If the length prefix is implausible or the JSON is undecodable
    """
    path = os.fspath(path)
    if not os.path.isfile(path):
        raise HeaderNotFoundError(path)

    try:
        file_size = os.path.getsize(path)
        with open(path, "rb") as f:
            prefix = f.read(HEADER_LENGTH_PREFIX_SIZE)
            if len(prefix) != HEADER_LENGTH_PREFIX_SIZE:
                raise CorruptHeaderError("file too short to contain a header length", path=path)

            header_len = struct.unpack("<Q", prefix)[0]

            if header_len == 0:
                raise CorruptHeaderError("header length is zero", path=path, header_length=0)
            if header_len > MAX_SAFETENSORS_HEADER_SIZE:
                raise CorruptHeaderError(
                    f"header length {header_len} exceeds limit {MAX_SAFETENSORS_HEADER_SIZE}",
                    path=path, header_length=header_len,
                )
            if header_len > file_size - HEADER_LENGTH_PREFIX_SIZE:
                raise CorruptHeaderError(
                    f"header length {header_len} runs past end of file ({file_size} bytes)",
                    path=path, header_length=header_len,
                )

            header_bytes = f.read(header_len)
    except FileNotFoundError:
        raise HeaderNotFoundError(path)
    except OSError as e:
        raise CorruptHeaderError(f"read failed: {e}", path=path)

    if len(header_bytes) != header_len:
        raise CorruptHeaderError("header appears truncated", path=path, header_length=header_len)

    return parse_header_bytes(header_bytes, path=path)


@dataclass
class HeaderReadResult:
    """Outcome of a header read: exactly one of header/error is set."""

    path: str
    header: Optional[SafetensorsHeader] = None
    error: Optional[HeaderReadError] = None

    @property
    def ok(self) -> bool:
        return self.header is not None

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, HeaderNotFoundError)


def try_read_header(path: str) -> HeaderReadResult:
    """
    Read a safetensors header, returning failures as values.

    Args:
        path: Path to the .safetensors file

    Returns:
        HeaderReadResult with either ``header`` or ``error`` populated
    """
    path = os.fspath(path)
    try:
        return HeaderReadResult(path=path, header=read_safetensors_header(path))
    except HeaderReadError as e:
        logger.warning(f"Cannot read safetensors header: {e}")
        return HeaderReadResult(path=path, error=e)


def is_valid_safetensors(path: str) -> bool:
    """True if the file has a parseable header with at least one tensor."""
    result = try_read_header(path)
    return result.ok and result.header.tensor_count > 0


# ============================================================================
# GGUF
# ============================================================================

@dataclass
class GgufInfo:
    """Header-level facts about a GGUF container."""

    architecture: Optional[str] = None
    quantization_type: Optional[str] = None
    tensor_count: int = 0
    fields: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"GgufInfo({self.architecture!r}, {self.quantization_type or '?'}, {self.tensor_count} tensors)"


def _gguf_field_value(reader_field) -> Any:
    """Decode a scalar or string GGUF field; arrays are skipped (None)."""
    if not reader_field.data or not reader_field.types:
        return None

    value_type = reader_field.types[0]
    if value_type == GGUFValueType.ARRAY:
        return None

    part = reader_field.parts[reader_field.data[0]]
    if value_type == GGUFValueType.STRING:
        return bytes(part).decode("utf-8", errors="replace")
    if len(part) == 1:
        return part[0].item() if hasattr(part[0], "item") else part[0]
    return None


def read_gguf_header(path: str) -> GgufInfo:
    """
    Inspect a GGUF file's key/value block and tensor descriptors.

    The quantization type reported is the dominant tensor type weighted by
    element count, since quantized diffusion models keep norms and biases in
    F32 while the bulk of the weights are e.g. Q4_K.

    Args:
        path: Path to the .gguf file

    Returns:
        GgufInfo

    Raises:
        HeaderNotFoundError: If the file does not exist
        CorruptHeaderError: If the file is not a readable GGUF container
    """
    path = os.fspath(path)
    if not os.path.isfile(path):
        raise HeaderNotFoundError(path)

    try:
        reader = GGUFReader(path, mode="r")
    except (ValueError, IndexError, OSError, struct.error) as e:
        raise CorruptHeaderError(f"not a readable GGUF container ({e})", path=path)

    fields: Dict[str, Any] = {}
    for name, reader_field in reader.fields.items():
        try:
            value = _gguf_field_value(reader_field)
        except (ValueError, IndexError, UnicodeDecodeError):
            logger.debug(f"Skipping undecodable GGUF field {name!r} in {path}")
            continue
        if value is not None:
            fields[name] = value

    weights: Counter = Counter()
    for tensor in reader.tensors:
        weights[tensor.tensor_type.name] += int(tensor.n_elements)

    quantization_type = weights.most_common(1)[0][0] if weights else None
    architecture = fields.get(GGUF_ARCHITECTURE_KEY)

    return GgufInfo(
        architecture=architecture if isinstance(architecture, str) else None,
        quantization_type=quantization_type,
        tensor_count=len(reader.tensors),
        fields=fields,
    )
