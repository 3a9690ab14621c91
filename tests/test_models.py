"""
Unit tests for classifier training, prediction and persistence
"""

import numpy as np
import pytest

from mi_pipeline.models import (
    TrainedModel, build_classifier, cross_validate, flatten_samples, load_model, predict,
    save_model, single_sample_dataset, train_classifier
)

HANDS, FEET = 773, 771
SELECTED = [0, 1, 3]


@pytest.fixture
def dataset(separable_activity):
    return single_sample_dataset(separable_activity, SELECTED)


@pytest.fixture
def trained(dataset):
    X, y, _ = dataset
    return train_classifier(X, y, SELECTED)


class TestBuildClassifier:
    """Tests for the estimator factory."""

    @pytest.mark.parametrize("kind", ["lda", "qda", "logistic"])
    def test_kinds(self, kind):
        pipeline = build_classifier(kind)
        assert [name for name, _ in pipeline.steps] == ["scaler", kind]

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            build_classifier("svm")


class TestDataset:
    """Tests for the single-sample dataset."""

    def test_flatten_order(self):
        samples = np.arange(2 * 3 * 2).reshape(2, 3, 2)
        flat = flatten_samples(samples, [0, 3])
        # Column 3 is channel 1, frequency 0
        assert flat.tolist() == [[0, 1], [6, 7]]

    def test_one_row_per_active_sample(self, separable_activity, dataset):
        X, y, trial_index = dataset
        expected = int(np.sum(separable_activity.lengths - separable_activity.cue_onsets))
        assert X.shape == (expected, len(SELECTED))
        assert len(y) == len(trial_index) == expected
        assert set(np.unique(trial_index).tolist()) == set(range(20))

    def test_empty_activity(self, make_activity):
        activity = make_activity([np.ones((3, 1, 1))], [HANDS], [1]).select([])
        X, y, groups = single_sample_dataset(activity, [0])
        assert X.shape == (0, 1)
        assert len(y) == 0 and len(groups) == 0


class TestTraining:
    """Tests for training and prediction."""

    def test_single_class_raises(self):
        X = np.random.RandomState(0).randn(10, 2)
        with pytest.raises(ValueError):
            train_classifier(X, np.full(10, HANDS), [0, 1])

    def test_classes_and_columns(self, trained):
        assert trained.classes == (FEET, HANDS)
        assert trained.column(HANDS) == 1
        with pytest.raises(ValueError):
            trained.column(786)

    def test_predict(self, trained, dataset):
        X, y, _ = dataset
        labels, proba = predict(trained, X)

        assert proba.shape == (len(X), 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert np.mean(labels == y) > 0.95

    def test_predict_empty(self, trained):
        labels, proba = predict(trained, np.zeros((0, len(SELECTED))))
        assert len(labels) == 0
        assert proba.shape == (0, 2)


class TestCrossValidation:
    """Tests for grouped cross-validation."""

    def test_grouped_folds(self, dataset):
        X, y, groups = dataset
        scores = cross_validate("lda", X, y, groups, folds=5)
        assert len(scores) == 5
        assert np.mean(scores) > 0.9

    def test_folds_reduced_to_class_size(self, dataset):
        X, y, groups = dataset
        assert len(cross_validate("lda", X, y, groups, folds=50)) == 10

    def test_too_few_trials(self, caplog):
        X = np.random.RandomState(0).randn(4, 2)
        y = np.array([HANDS, HANDS, FEET, FEET])
        groups = np.array([0, 0, 1, 1])
        assert cross_validate("lda", X, y, groups) == []
        assert "Not enough trials" in caplog.text


class TestPersistence:
    """Tests for joblib persistence."""

    def test_save_and_load(self, trained, dataset, tmp_path):
        path = str(tmp_path / "model.joblib")
        save_model(trained, path)
        loaded = load_model(path)

        assert isinstance(loaded, TrainedModel)
        assert loaded.classes == trained.classes
        np.testing.assert_array_equal(loaded.selected, trained.selected)
        X, _, _ = dataset
        np.testing.assert_allclose(predict(loaded, X[:10])[1], predict(trained, X[:10])[1])

    def test_load_rejects_other_objects(self, tmp_path):
        import joblib

        path = str(tmp_path / "other.joblib")
        joblib.dump({"not": "a model"}, path)
        with pytest.raises(ValueError):
            load_model(path)
