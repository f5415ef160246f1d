"""Tests for cosine similarity."""

import pytest

from teachbot.utils.vector_math import cosine_similarity


@pytest.mark.parametrize('vector', [[1.0, 2.0, 3.0], [0.5, -0.25], [1e-3, 4.0, -7.5, 2.0]])
def test_identical_vectors_have_similarity_one(vector):
    assert cosine_similarity(vector, vector) == pytest.approx(1.0)


def test_length_mismatch_returns_zero():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_zero_vector_returns_zero():
    assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0


def test_empty_vectors_return_zero():
    assert cosine_similarity([], []) == 0.0


def test_orthogonal_and_opposite_vectors():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)


def test_result_stays_within_bounds():
    result = cosine_similarity([0.1, 0.2, 0.3], [0.1, 0.2, 0.3000001])
    assert -1.0 <= result <= 1.0
