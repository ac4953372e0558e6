import numpy as np
import pytest

from ragcore.core.errors import DimensionMismatchError
from ragcore.core.retrieve.similarity import cosine_similarities, cosine_similarity, rank


def test_self_similarity_is_one():
    v = [0.3, -1.2, 4.0, 0.0, 2.5]
    assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-6)


def test_zero_and_orthogonal_vectors():
    assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_dimension_mismatch_raises():
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])
    with pytest.raises(DimensionMismatchError):
        cosine_similarities([1.0, 2.0], np.ones((3, 4)))


def test_matrix_scores_match_pairwise():
    matrix = np.array([[1.0, 0.0], [0.0, 0.0], [1.0, 1.0]])
    scores = cosine_similarities([1.0, 0.0], matrix)
    assert scores[0] == pytest.approx(1.0)
    assert scores[1] == 0.0
    assert scores[2] == pytest.approx(cosine_similarity([1.0, 0.0], [1.0, 1.0]))


def test_rank_orders_by_score_then_insertion():
    ranked = rank([0.5, 0.9, 0.5], [3, 1, 2], top_k=3, threshold=0.0)
    assert ranked == [(1, 0.9), (2, 0.5), (0, 0.5)]


def test_rank_applies_threshold_and_top_k():
    scores = [0.1, 0.8, 0.75, 0.69, 0.95]
    ranked = rank(scores, list(range(5)), top_k=2, threshold=0.7)
    assert [i for i, _ in ranked] == [4, 1]
    assert rank(scores, list(range(5)), top_k=5, threshold=0.99) == []
