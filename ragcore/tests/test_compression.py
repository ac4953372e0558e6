import numpy as np
import pytest

from ragcore.core.embed.compression import (
    batch_compress,
    batch_decompress,
    calculate_storage_savings,
    compress,
    decompress_vector,
    error_bound,
)


@pytest.mark.parametrize("method", ["int8", "int16"])
def test_reconstruction_stays_within_error_bound(method):
    rng = np.random.default_rng(42)
    vector = rng.normal(0, 0.3, size=768).tolist()

    compressed = compress(vector, method)
    restored = decompress_vector(compressed)
    bound = error_bound(compressed.min, compressed.max, method)

    worst = max(abs(a - b) for a, b in zip(vector, restored))
    print(f"{method}: worst error {worst:.6f}, bound {bound:.6f}")
    assert len(restored) == 768
    assert worst <= bound + 1e-12


def test_int16_is_tighter_than_int8():
    vector = np.linspace(-1.0, 1.0, 64).tolist()
    assert error_bound(-1.0, 1.0, "int16") < error_bound(-1.0, 1.0, "int8")
    assert all(0 <= v <= 255 for v in compress(vector, "int8").values)
    assert all(0 <= v <= 65535 for v in compress(vector, "int16").values)


def test_constant_vector_decodes_to_min():
    compressed = compress([0.25] * 16, "int8")
    assert compressed.values == [0] * 16
    assert decompress_vector(compressed) == pytest.approx([0.25] * 16)


def test_none_passes_floats_through():
    vector = [0.1, -0.2, 0.3]
    compressed = compress(vector, "none")
    assert compressed.compression_ratio == 1.0
    assert decompress_vector(compressed) == vector


def test_unknown_method_is_rejected():
    with pytest.raises(ValueError):
        compress([1.0, 2.0], "int4")


def test_batch_helpers():
    vectors = [[0.0, 1.0, 0.5], [-1.0, 1.0, 0.0]]
    restored = batch_decompress(batch_compress(vectors, "int16"))
    for original, back in zip(vectors, restored):
        assert back == pytest.approx(original, abs=1e-4)


def test_storage_savings_for_768_dimensions():
    savings = calculate_storage_savings(768, "int8")
    assert savings.original_bytes == 3072
    assert savings.compressed_bytes == 784
    assert savings.saved_bytes == 2288
    assert savings.savings_percentage == pytest.approx(74.479, abs=0.01)

    assert calculate_storage_savings(768, "none").saved_bytes == 0
