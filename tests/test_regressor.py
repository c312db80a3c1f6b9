import threading

import numpy as np
import pytest

from position_models import PositionNetwork, PositionRegressor, TrainingCancelled


def test_network_shapes():
    assert len(PositionNetwork(0).net) == 1
    assert len(PositionNetwork(16).net) == 3


def test_fit_learns_linear_cdf():
    keys = np.arange(200, dtype=np.float64) * 5.0
    ranks = np.arange(200, dtype=np.float64)
    regressor = PositionRegressor(num_neurons=0, seed=1)
    regressor.fit(keys, ranks, scale=len(keys), batch_size=32, max_epochs=1500, learning_rate=0.01)
    assert regressor.is_trained
    errors = np.abs(regressor.predict_batch(keys) - ranks)
    assert errors.max() < 25


def test_fit_is_deterministic_for_a_seed():
    keys = np.linspace(0, 1000, 50)
    ranks = np.arange(50, dtype=np.float64)
    predictions = []
    for _ in range(2):
        regressor = PositionRegressor(num_neurons=4, seed=7)
        regressor.fit(keys, ranks, scale=50, batch_size=8, max_epochs=30, learning_rate=0.01)
        predictions.append(regressor.predict_batch(keys))
    np.testing.assert_allclose(predictions[0], predictions[1])


def test_fit_rejects_empty_and_mismatched_data():
    regressor = PositionRegressor()
    with pytest.raises(ValueError):
        regressor.fit([], [], scale=1, batch_size=1, max_epochs=1, learning_rate=0.01)
    with pytest.raises(ValueError):
        regressor.fit([1.0, 2.0], [0.0], scale=2, batch_size=1, max_epochs=1, learning_rate=0.01)


def test_fit_honours_cancellation():
    event = threading.Event()
    event.set()
    regressor = PositionRegressor(seed=0)
    with pytest.raises(TrainingCancelled):
        regressor.fit([1.0, 2.0], [0.0, 1.0], scale=2, batch_size=2, max_epochs=10, learning_rate=0.01,
                      cancel_event=event)
    assert not regressor.is_trained


def test_batch_size_is_capped_at_dataset_size():
    regressor = PositionRegressor(seed=0)
    regressor.fit([3.0], [0.0], scale=1, batch_size=64, max_epochs=5, learning_rate=0.01)
    assert regressor.training_size == 1
    assert np.isfinite(regressor.predict(3.0))


@pytest.mark.parametrize("num_neurons", [0, 8])
def test_scalar_predict_matches_batch_predict(num_neurons):
    keys = np.linspace(-50.0, 950.0, 120)
    ranks = np.arange(120, dtype=np.float64)
    regressor = PositionRegressor(num_neurons=num_neurons, seed=3)
    regressor.fit(keys, ranks, scale=120, batch_size=16, max_epochs=50, learning_rate=0.01)
    queries = np.concatenate([keys[::7], [-500.0, 2000.0]])
    scalar = np.array([regressor.predict(key) for key in queries])
    np.testing.assert_allclose(scalar, regressor.predict_batch(queries), rtol=1e-4, atol=1e-3)
