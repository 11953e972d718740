"""Tests for output transforms, labelling, and ranking."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import make_settings

from edgeclassify.ml.errors import ShapeMismatchError
from edgeclassify.ml.postprocessing import (
    Category,
    Dequantize,
    build_output_transform,
    identity,
    label_scores,
    postprocess,
    rank,
    softmax,
)


class TestOutputTransforms:
    def test_identity_returns_float32(self) -> None:
        scores = identity(np.array([[0.25, 0.75]], dtype=np.float64))
        assert scores.dtype == np.float32
        np.testing.assert_allclose(scores, [[0.25, 0.75]])

    def test_dequantize(self) -> None:
        scores = Dequantize(scale=1 / 255, zero_point=0)(np.array([0, 51, 255], dtype=np.uint8))
        np.testing.assert_allclose(scores, [0.0, 0.2, 1.0], atol=1e-6)

    def test_dequantize_with_zero_point(self) -> None:
        scores = Dequantize(scale=0.5, zero_point=128)(np.array([128, 130], dtype=np.uint8))
        np.testing.assert_allclose(scores, [0.0, 1.0])

    def test_softmax_sums_to_one(self) -> None:
        scores = softmax(np.array([1.0, 2.0, 3.0]))
        assert scores.sum() == pytest.approx(1.0)
        assert scores.argmax() == 2

    def test_build_from_settings(self) -> None:
        assert build_output_transform(make_settings()) is identity
        assert build_output_transform(make_settings(output_transform="softmax")) is softmax
        transform = build_output_transform(
            make_settings(output_transform="dequantize", output_scale=0.1, output_zero_point=3)
        )
        assert transform == Dequantize(scale=0.1, zero_point=3)


class TestLabelScores:
    def test_pairs_labels_by_index(self) -> None:
        categories = label_scores(["cat", "dog"], np.array([[0.2, 0.8]], dtype=np.float32))
        assert [c.label for c in categories] == ["cat", "dog"]
        assert categories[1].score == pytest.approx(0.8)

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(ShapeMismatchError, match="3 scores for 2 labels"):
            label_scores(["cat", "dog"], np.array([0.1, 0.2, 0.7]))


class TestRank:
    def test_descending_by_score(self) -> None:
        ranked = rank([Category("a", 0.1), Category("b", 0.7), Category("c", 0.2)])
        assert [c.label for c in ranked] == ["b", "c", "a"]

    def test_ties_keep_label_order(self) -> None:
        ranked = rank([Category("a", 0.5), Category("b", 0.9), Category("c", 0.5), Category("d", 0.5)])
        assert [c.label for c in ranked] == ["b", "a", "c", "d"]

    def test_scores_are_non_increasing(self) -> None:
        rng = np.random.default_rng(7)
        scores = rng.random(100).round(1)
        ranked = rank(label_scores([str(i) for i in range(100)], scores))
        assert all(a.score >= b.score for a, b in zip(ranked, ranked[1:], strict=False))


class TestPostprocess:
    def test_dog_scenario(self) -> None:
        categories = postprocess(np.array([[0.2, 0.8]], dtype=np.float32), ["cat", "dog"])
        assert categories[0].label == "dog"
        assert categories[0].score == pytest.approx(0.8)

    def test_quantized_output(self) -> None:
        categories = postprocess(
            np.array([[255, 0, 128]], dtype=np.uint8),
            ["cat", "dog", "fox"],
            Dequantize(scale=1 / 255),
        )
        assert categories[0].label == "cat"
        assert categories[0].score == pytest.approx(1.0)
        assert [c.label for c in categories] == ["cat", "fox", "dog"]
