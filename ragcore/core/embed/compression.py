"""
Linear quantisation of embedding vectors.

int8 maps [min, max] onto [0, 255], int16 onto [0, 65535]; "none" passes the
floats through. Decompression reconstructs each value to within
(max - min) / quant_range of the original.
"""
from typing import List, Sequence

import numpy as np

from ragcore.models.chunk import CompressedVector, StorageSavings

QUANT_RANGES = {"int8": 255, "int16": 65535}
BYTES_PER_VALUE = {"int8": 1, "int16": 2, "none": 4}
METADATA_BYTES = 16  # min + max + method + dimensions


def _check_method(method: str) -> None:
    if method != "none" and method not in QUANT_RANGES:
        raise ValueError(f"Unknown compression method: {method}")


def compress(vector: Sequence[float], method: str = "int8") -> CompressedVector:
    _check_method(method)
    values = np.asarray(vector, dtype=np.float64)
    dimensions = int(values.shape[0])

    if method == "none":
        return CompressedVector(
            values=values.tolist(), method="none", min=0.0, max=0.0,
            dimensions=dimensions, compression_ratio=1.0
        )

    quant_range = QUANT_RANGES[method]
    v_min = float(values.min()) if dimensions else 0.0
    v_max = float(values.max()) if dimensions else 0.0
    value_range = v_max - v_min

    if value_range == 0:
        # Constant vector: every value decodes back to min
        quantized = np.zeros(dimensions, dtype=np.int64)
    else:
        quantized = np.rint((values - v_min) / value_range * quant_range).astype(np.int64)
        np.clip(quantized, 0, quant_range, out=quantized)

    original_bytes = dimensions * 4
    compressed_bytes = dimensions * BYTES_PER_VALUE[method] + METADATA_BYTES
    return CompressedVector(
        values=quantized.tolist(),
        method=method,
        min=v_min,
        max=v_max,
        dimensions=dimensions,
        compression_ratio=compressed_bytes / original_bytes if original_bytes else 1.0
    )


def decompress(values: Sequence[float], method: str, v_min: float, v_max: float) -> List[float]:
    _check_method(method)
    if method == "none":
        return [float(v) for v in values]

    quant_range = QUANT_RANGES[method]
    quantized = np.asarray(values, dtype=np.float64)
    return (quantized / quant_range * (v_max - v_min) + v_min).tolist()


def decompress_vector(compressed: CompressedVector) -> List[float]:
    return decompress(compressed.values, compressed.method, compressed.min, compressed.max)


def error_bound(v_min: float, v_max: float, method: str) -> float:
    """Maximum per-element reconstruction error for a compressed vector."""
    if method == "none":
        return 0.0
    return (v_max - v_min) / QUANT_RANGES[method]


def batch_compress(vectors: Sequence[Sequence[float]], method: str = "int8") -> List[CompressedVector]:
    return [compress(v, method) for v in vectors]


def batch_decompress(compressed: Sequence[CompressedVector]) -> List[List[float]]:
    return [decompress_vector(c) for c in compressed]


def calculate_storage_savings(dimensions: int, method: str) -> StorageSavings:
    _check_method(method)
    original_bytes = dimensions * 4
    compressed_bytes = dimensions * BYTES_PER_VALUE[method]
    if method != "none":
        compressed_bytes += METADATA_BYTES
    saved = original_bytes - compressed_bytes
    return StorageSavings(
        original_bytes=original_bytes,
        compressed_bytes=compressed_bytes,
        saved_bytes=saved,
        savings_percentage=(saved / original_bytes * 100) if original_bytes else 0.0
    )
