"""
Test suite for classification metrics.

Hand-computed reference (binary):
    actual    = no no no yes yes yes
    predicted = no no yes no yes yes
    confusion = [[2, 1], [1, 2]]
    accuracy = 4/6, macro precision = recall = specificity = 2/3
    MCC = (2*2 - 1*1) / sqrt(3*3*3*3) = 1/3

Multi-class MCC and macro precision are cross-checked against scikit-learn.
"""

import numpy as np
import pytest

from ml_engine.services.evaluation import (
    PROBABILITY_FLOOR,
    approximate_log_loss,
    confusion_matrix,
    evaluate_predictions,
    f1_from,
    macro_scores,
    matthews_corrcoef,
)


ACTUAL = ["no", "no", "no", "yes", "yes", "yes"]
PREDICTED = ["no", "no", "yes", "no", "yes", "yes"]


# =============================================================================
# CONFUSION MATRIX
# =============================================================================


class TestConfusionMatrix:
    """Tests for confusion matrix construction."""

    def test_binary_matrix(self) -> None:
        cm, labels = confusion_matrix(ACTUAL, PREDICTED)

        assert labels == ["no", "yes"]
        assert cm.tolist() == [[2, 1], [1, 2]]

    def test_labels_are_union_of_actual_and_predicted(self) -> None:
        """A label only ever predicted still gets a row and a column."""
        cm, labels = confusion_matrix(["a", "a"], ["a", "b"])

        assert labels == ["a", "b"]
        assert cm.tolist() == [[1, 1], [0, 0]]


# =============================================================================
# METRICS
# =============================================================================


class TestMetrics:
    """Tests for the individual metrics."""

    def test_binary_reference_values(self) -> None:
        metrics = evaluate_predictions(ACTUAL, PREDICTED)

        assert metrics.accuracy == pytest.approx(4 / 6)
        assert metrics.precision == pytest.approx(2 / 3)
        assert metrics.recall == pytest.approx(2 / 3)
        assert metrics.specificity == pytest.approx(2 / 3)
        assert metrics.f1 == pytest.approx(2 / 3)
        assert metrics.mcc == pytest.approx(1 / 3)

    def test_log_loss_from_row_proportions(self) -> None:
        """
        Correct rows get p = 2/3, wrong rows 1 - 1/3 = 2/3, so every row
        contributes -ln(2/3).
        """
        cm, labels = confusion_matrix(ACTUAL, PREDICTED)
        loss = approximate_log_loss(ACTUAL, PREDICTED, cm, labels)
        assert loss == pytest.approx(-np.log(2 / 3))

    def test_perfect_predictions(self) -> None:
        metrics = evaluate_predictions(ACTUAL, ACTUAL)

        assert metrics.accuracy == 1.0
        assert metrics.mcc == pytest.approx(1.0)
        assert metrics.log_loss == pytest.approx(0.0)

    def test_wrong_rows_with_pure_error_rows_are_floored(self) -> None:
        """A row that is always wrong gives 1 - p = 0, floored before the log."""
        cm, labels = confusion_matrix(["a", "b"], ["b", "b"])
        loss = approximate_log_loss(["a", "b"], ["b", "b"], cm, labels)
        assert loss == pytest.approx(-np.log(PROBABILITY_FLOOR) / 2)

    def test_empty_denominators_contribute_zero(self) -> None:
        """A class never predicted has precision 0 instead of NaN."""
        cm = np.array([[3, 0], [2, 0]])
        precision, recall, specificity = macro_scores(cm)

        assert precision == pytest.approx((3 / 5 + 0) / 2)
        assert recall == pytest.approx((1.0 + 0.0) / 2)
        assert not np.isnan(specificity)

    def test_mcc_degenerate_cases(self) -> None:
        assert matthews_corrcoef(np.array([[5]])) == 0.0
        assert matthews_corrcoef(np.array([[3, 0], [2, 0]])) == 0.0

    def test_f1_zero_when_precision_and_recall_zero(self) -> None:
        assert f1_from(0.0, 0.0) == 0.0

    def test_empty_predictions(self) -> None:
        metrics = evaluate_predictions([], [])
        assert metrics.accuracy == 0.0
        assert metrics.log_loss == 0.0


# =============================================================================
# PARITY WITH SCIKIT-LEARN
# =============================================================================


@pytest.mark.parity
class TestSklearnParity:
    """Macro precision and MCC agree with scikit-learn."""

    @pytest.fixture
    def three_class_predictions(self):
        np.random.seed(42)
        labels = np.array(["home", "realtime", "tableau"])
        actual = labels[np.random.randint(0, 3, 200)]
        predicted = np.where(np.random.random(200) < 0.7, actual, labels[np.random.randint(0, 3, 200)])
        return actual.tolist(), predicted.tolist()

    def test_multiclass_mcc(self, three_class_predictions) -> None:
        from sklearn.metrics import matthews_corrcoef as sk_mcc

        actual, predicted = three_class_predictions
        metrics = evaluate_predictions(actual, predicted)

        assert metrics.mcc == pytest.approx(sk_mcc(actual, predicted), abs=1e-9)

    def test_multiclass_macro_precision_recall(self, three_class_predictions) -> None:
        from sklearn.metrics import precision_score, recall_score

        actual, predicted = three_class_predictions
        metrics = evaluate_predictions(actual, predicted)

        assert metrics.precision == pytest.approx(
            precision_score(actual, predicted, average="macro", zero_division=0), abs=1e-9
        )
        assert metrics.recall == pytest.approx(
            recall_score(actual, predicted, average="macro", zero_division=0), abs=1e-9
        )

    def test_binary_mcc(self) -> None:
        from sklearn.metrics import matthews_corrcoef as sk_mcc

        assert evaluate_predictions(ACTUAL, PREDICTED).mcc == pytest.approx(sk_mcc(ACTUAL, PREDICTED))
