"""
Test suite for the supervised trainer.

Tests verify:
1. Train/test split sizes, disjointness and seeded reproducibility
2. Logistic regression learns a separable signal and ignores constant columns
3. Decision tree split search, stopping rules and impurity trajectory
4. train_model validation and the packaged TrainingResult
"""

from collections import Counter, defaultdict
from typing import Dict, List

import numpy as np
import pytest
from pydantic import ValidationError

from ml_engine.core.exceptions import DegenerateSplitError, EmptyDatasetError, InvalidConfigError
from ml_engine.models import DecisionTreeModel, FeatureRow, LogisticModel, ModelType, TrainingConfig
from ml_engine.services.trainer import (
    build_tree,
    find_best_split,
    impurity_trajectory,
    split_indices,
    train_logistic_regression,
    train_model,
    tree_depth,
    tree_importance,
)


def make_config(
    features: List[str],
    target: str,
    model_type: ModelType = ModelType.LOGISTIC_REGRESSION,
    **overrides,
) -> TrainingConfig:
    return TrainingConfig(targetVariable=target, features=features, modelType=model_type, **overrides)


def importance_of(result, feature: str) -> float:
    return next(fi.importance for fi in result.featureImportance if fi.feature == feature)


def leaf_depths(node, depth: int = 0) -> List[int]:
    if node.is_leaf:
        return [depth]
    return leaf_depths(node.left, depth + 1) + leaf_depths(node.right, depth + 1)


def labels_reaching_leaves(root, X: np.ndarray, y: List[str]) -> Dict[int, List[str]]:
    """Training labels grouped by the id of the leaf each row is routed to."""
    reached: Dict[int, List[str]] = defaultdict(list)
    for row, label in zip(X, y):
        node = root
        while not node.is_leaf:
            node = node.left if row[node.featureIndex] <= node.threshold else node.right
        reached[id(node)].append(label)
    return reached


def all_leaves(node) -> list:
    if node.is_leaf:
        return [node]
    return all_leaves(node.left) + all_leaves(node.right)


# =============================================================================
# TRAIN / TEST SPLIT
# =============================================================================


class TestSplitIndices:
    """Tests for the seeded train/test split."""

    def test_split_sizes(self) -> None:
        train, test = split_indices(80, 0.2, np.random.default_rng(0))

        assert len(train) == 64
        assert len(test) == 16
        assert sorted([*train, *test]) == list(range(80))

    def test_both_sides_non_empty(self) -> None:
        """A tiny dataset with an extreme split still keeps one row on each side."""
        train, test = split_indices(5, 0.99, np.random.default_rng(0))
        assert len(train) == 1
        assert len(test) == 4

        train, test = split_indices(2, 0.2, np.random.default_rng(0))
        assert len(train) == 1
        assert len(test) == 1

    def test_same_seed_same_split(self) -> None:
        first = split_indices(30, 0.3, np.random.default_rng(5))
        second = split_indices(30, 0.3, np.random.default_rng(5))
        assert first[0].tolist() == second[0].tolist()


# =============================================================================
# LOGISTIC REGRESSION
# =============================================================================


class TestLogisticRegression:
    """Tests for gradient-descent logistic regression."""

    def test_loss_decreases(self) -> None:
        np.random.seed(42)
        X = np.vstack([np.random.normal(-2, 0.5, (20, 1)), np.random.normal(2, 0.5, (20, 1))])
        y = ["a"] * 20 + ["b"] * 20

        model, losses = train_logistic_regression(X, y, 0.1, 50, ["x"], np.random.default_rng(0))

        assert len(losses) == 50
        assert losses[-1] < losses[0]
        assert model.classes == ["a", "b"]
        assert np.asarray(model.weights).shape == (2, 1)

    def test_separable_binary(self, separable_rows) -> None:
        result = train_model(
            separable_rows,
            make_config(["signal", "noise", "flat"], "will_export", epochs=200),
            seed=42,
        )

        assert isinstance(result.model, LogisticModel)
        assert result.accuracy >= 0.9
        assert result.trainAccuracy >= 0.9
        assert result.classLabels == ["no", "yes"]

    def test_importance_favours_signal_and_zeroes_constant(self, separable_rows) -> None:
        result = train_model(
            separable_rows,
            make_config(["signal", "noise", "flat"], "will_export", epochs=200),
            seed=42,
        )

        assert importance_of(result, "flat") == 0.0
        assert importance_of(result, "signal") > importance_of(result, "noise")
        assert sum(fi.importance for fi in result.featureImportance) == pytest.approx(1.0)

    def test_multiclass_softmax(self, multiclass_rows) -> None:
        result = train_model(
            multiclass_rows,
            make_config(["x", "y"], "primary_resource", learningRate=0.5, epochs=300),
            seed=42,
        )

        assert result.model.classes == ["home", "realtime", "tableau"]
        assert np.asarray(result.model.weights).shape == (3, 2)
        assert result.accuracy >= 0.9


# =============================================================================
# DECISION TREE
# =============================================================================


class TestDecisionTree:
    """Tests for Gini split search and tree growth."""

    def test_find_best_split_pure_threshold(self) -> None:
        X = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0], [4.0, 5.0]])
        y = ["a", "a", "b", "b"]

        feature, threshold, impurity = find_best_split(X, y)

        assert feature == 0
        assert threshold == pytest.approx(2.5)
        assert impurity == pytest.approx(0.0)

    def test_constant_features_raise(self) -> None:
        with pytest.raises(DegenerateSplitError):
            find_best_split(np.ones((4, 2)), ["a", "b", "a", "b"])

    def test_no_improving_split_raises(self) -> None:
        """The only cut leaves both children at the parent impurity of 0.5."""
        X = np.array([[0.0], [0.0], [1.0], [1.0]])
        with pytest.raises(DegenerateSplitError, match="lowers impurity"):
            find_best_split(X, ["a", "b", "a", "b"])

    def test_max_depth_zero_gives_majority_leaf(self) -> None:
        X = np.array([[0.0], [1.0], [2.0]])
        root = build_tree(X, ["a", "b", "b"], 0, 0)

        assert root.is_leaf
        assert root.prediction == "b"
        assert root.sample_count == 3

    def test_degenerate_node_becomes_leaf(self) -> None:
        """Mixed labels over constant features cannot split and yield a leaf."""
        root = build_tree(np.zeros((6, 2)), ["a", "a", "b", "b", "b", "a"], 0, 5)

        assert root.is_leaf
        assert root.prediction == "a"
        assert {c.label: c.count for c in root.counts} == {"a": 3, "b": 3}

    def test_small_node_becomes_leaf(self) -> None:
        root = build_tree(np.array([[0.0], [1.0]]), ["a", "b"], 0, 5)
        assert root.is_leaf

    def test_impurity_trajectory(self) -> None:
        """Depth 0 holds the root impurity; the full tree is pure."""
        X = np.array([[1.0], [2.0], [3.0], [4.0], [5.0], [6.0]])
        y = ["a", "a", "b", "b", "c", "c"]
        root = build_tree(X, y, 0, 5)

        trajectory = impurity_trajectory(root)

        assert len(trajectory) == tree_depth(root) + 1
        assert trajectory[0] == pytest.approx(2.0 / 3.0)
        assert trajectory[-1] == pytest.approx(0.0)
        assert all(later <= earlier + 1e-12 for earlier, later in zip(trajectory, trajectory[1:]))

    def test_tree_importance_counts_routed_samples(self) -> None:
        X = np.array([[1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0]])
        root = build_tree(X, ["a", "a", "b", "b"], 0, 5)

        assert tree_importance(root, 2).tolist() == [4.0, 0.0]

    def test_separable_tree(self, separable_rows) -> None:
        result = train_model(
            separable_rows,
            make_config(["signal", "noise", "flat"], "will_export", ModelType.DECISION_TREE, maxDepth=3),
            seed=42,
        )

        assert isinstance(result.model, DecisionTreeModel)
        assert result.accuracy >= 0.9
        assert result.trainAccuracy == 1.0
        assert importance_of(result, "signal") == pytest.approx(1.0)
        assert result.trainingLoss[-1] == pytest.approx(0.0)

    def test_tree_classes_cover_all_labels(self, multiclass_rows) -> None:
        result = train_model(
            multiclass_rows,
            make_config(["x", "y"], "primary_resource", ModelType.DECISION_TREE),
            seed=1,
        )

        assert result.model.classes == ["home", "realtime", "tableau"]
        assert result.accuracy >= 0.9

    def test_single_split_near_five(self) -> None:
        """
        100 users whose label flips at x = 5 need exactly one split.

        The stored threshold lives in standardized units; mapped back through the
        model's mean and std it must land near 5.
        """
        xs = np.concatenate([np.linspace(0.0, 4.5, 50), np.linspace(5.5, 10.0, 50)])
        rows = [
            FeatureRow(user_id=f"u{i:03d}", values={"x": float(x), "label": "high" if x > 5 else "low"})
            for i, x in enumerate(xs)
        ]

        result = train_model(rows, make_config(["x"], "label", ModelType.DECISION_TREE), seed=42)

        root = result.model.root
        assert not root.is_leaf
        assert root.left.is_leaf and root.right.is_leaf
        assert (root.left.prediction, root.right.prediction) == ("low", "high")
        raw_threshold = root.threshold * result.model.stds[0] + result.model.means[0]
        assert raw_threshold == pytest.approx(5.0, abs=0.5)
        assert result.accuracy == 1.0

    @pytest.mark.parametrize("max_depth", [1, 2, 3, 6])
    def test_paths_bounded_and_leaves_hold_their_own_labels(self, max_depth) -> None:
        """
        Random labels force a deep tree. No leaf sits deeper than max_depth, and
        each leaf's tally and majority come from the training rows routed to it.
        """
        np.random.seed(42)
        X = np.random.normal(size=(60, 3))
        y = [str(label) for label in np.random.choice(["a", "b", "c"], size=60)]

        root = build_tree(X, y, 0, max_depth)
        reached = labels_reaching_leaves(root, X, y)

        assert max(leaf_depths(root)) <= max_depth
        for leaf in all_leaves(root):
            labels = reached[id(leaf)]
            assert labels, "every leaf is reached by at least one training row"
            tally = {c.label: c.count for c in leaf.counts}
            assert tally == dict(Counter(labels))
            assert leaf.prediction in labels
            assert tally[leaf.prediction] == max(tally.values())

    @pytest.mark.parametrize("max_depth", [1, 2, 3])
    def test_trained_tree_respects_max_depth(self, multiclass_rows, max_depth) -> None:
        result = train_model(
            multiclass_rows,
            make_config(["x", "y"], "primary_resource", ModelType.DECISION_TREE, maxDepth=max_depth),
            seed=42,
        )

        assert tree_depth(result.model.root) <= max_depth
        assert len(result.trainingLoss) == tree_depth(result.model.root) + 1


# =============================================================================
# TRAINING PIPELINE
# =============================================================================


class TestTrainModel:
    """Tests for validation and the packaged result."""

    @pytest.mark.parametrize("test_split", [0.0, 1.0, -0.1, 1.5])
    def test_test_split_must_be_open_interval(self, separable_rows, test_split) -> None:
        with pytest.raises(InvalidConfigError, match="testSplit"):
            train_model(separable_rows, make_config(["signal"], "will_export", testSplit=test_split))

    def test_single_row_rejected(self) -> None:
        rows = [FeatureRow(user_id="a", values={"x": 1.0, "t": "yes"})]
        with pytest.raises(InvalidConfigError, match="two rows"):
            train_model(rows, make_config(["x"], "t"))

    def test_empty_rows_rejected(self) -> None:
        with pytest.raises(EmptyDatasetError):
            train_model([], make_config(["x"], "t"))

    def test_target_in_features_rejected(self, separable_rows) -> None:
        with pytest.raises(InvalidConfigError):
            train_model(separable_rows, make_config(["signal", "will_export"], "will_export"))

    def test_result_bookkeeping(self, separable_rows) -> None:
        result = train_model(separable_rows, make_config(["signal", "noise"], "will_export"), seed=3)

        assert result.trainSize == 64
        assert result.testSize == 16
        assert set(result.trainUserIds).isdisjoint(result.testUserIds)
        assert len(set(result.trainUserIds) | set(result.testUserIds)) == 80
        assert result.modelId.startswith("model_")
        assert result.timestamp.tzinfo is not None
        assert result.trainingDurationMs >= 0
        assert len(result.trainingLoss) == 100
        assert sum(sum(row) for row in result.confusionMatrix) == 16
        assert result.config.features == ["signal", "noise"]

    @pytest.mark.parametrize("model_type", [ModelType.LOGISTIC_REGRESSION, ModelType.DECISION_TREE])
    def test_accuracy_matches_confusion_matrix(self, multiclass_rows, model_type) -> None:
        result = train_model(
            multiclass_rows,
            make_config(["x", "y"], "primary_resource", model_type, maxDepth=2, epochs=20),
            seed=7,
        )

        cm = np.asarray(result.confusionMatrix)
        assert np.trace(cm) / cm.sum() == pytest.approx(result.accuracy)

    @pytest.mark.parametrize("model_type", [ModelType.LOGISTIC_REGRESSION, ModelType.DECISION_TREE])
    def test_zero_variance_column_keeps_losses_finite(self, separable_rows, model_type) -> None:
        result = train_model(
            separable_rows,
            make_config(["flat", "signal"], "will_export", model_type),
            seed=42,
        )

        losses = np.asarray(result.trainingLoss)
        assert not np.isnan(losses).any()
        assert np.isfinite(losses).all()
        assert importance_of(result, "flat") == pytest.approx(0.0, abs=1e-9)

    def test_same_seed_reproduces_model(self, separable_rows) -> None:
        config = make_config(["signal", "noise"], "will_export")

        first = train_model(separable_rows, config, seed=11)
        second = train_model(separable_rows, config, seed=11)

        assert first.trainUserIds == second.trainUserIds
        assert first.model.weights == second.model.weights
        assert first.accuracy == second.accuracy
        assert first.modelId != second.modelId

    def test_result_is_frozen(self, separable_rows) -> None:
        result = train_model(separable_rows, make_config(["signal"], "will_export"), seed=3)
        with pytest.raises(ValidationError):
            result.accuracy = 0.0
