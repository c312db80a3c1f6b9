import logging
import threading
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from sklearn.preprocessing import MinMaxScaler

from .network import PositionNetwork

logger = logging.getLogger(__name__)


class TrainingCancelled(Exception):
    """Raised when a fit is aborted through its cancellation event."""


def get_random_batch(rng: np.random.Generator, batch_size: int, dataset_size: int) -> np.ndarray:
    """Draw ``batch_size`` indices uniformly at random (with replacement)."""
    return rng.integers(0, dataset_size, size=batch_size)


class PositionRegressor:
    """Regression model predicting the position of a key in a sorted array.

    Keys are min-max scaled before they reach the network. The network learns
    ``position / scale``; predictions are multiplied back by ``scale``.

    Parameters:
    -----------
    num_neurons : int
        Hidden width of the network, 0 for a linear model
    seed : Optional[int]
        Seed for weight initialization and batch sampling
    """

    def __init__(self, num_neurons: int = 0, seed: Optional[int] = None):
        self.num_neurons = num_neurons
        self.seed = seed
        self.scaler = MinMaxScaler()
        self.model = self._build_network()
        self.scale = 1.0
        self.is_trained = False
        self.last_loss: Optional[float] = None
        self._key_scale = 1.0
        self._key_offset = 0.0
        self._layers: List[Tuple[np.ndarray, np.ndarray]] = []
        self.training_size = 0
        self._rng = np.random.default_rng(seed)

    def _build_network(self) -> PositionNetwork:
        if self.seed is None:
            return PositionNetwork(self.num_neurons)
        # Seed weight init without disturbing the global torch RNG
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(self.seed)
            return PositionNetwork(self.num_neurons)

    def fit(self,
            keys: Sequence[float],
            targets: Sequence[float],
            scale: float,
            batch_size: int,
            max_epochs: int,
            learning_rate: float,
            cancel_event: Optional[threading.Event] = None) -> float:
        """Train on (key, target) pairs with random mini-batches.

        Parameters:
        -----------
        keys : Sequence[float]
            Training keys
        targets : Sequence[float]
            Target positions for each key
        scale : float
            Factor applied to the network output before the loss is computed
        batch_size : int
            Mini-batch size, capped at the number of samples
        max_epochs : int
            Number of mini-batch steps
        learning_rate : float
            Adam learning rate
        cancel_event : Optional[threading.Event]
            Checked before every epoch

        Returns:
        --------
        float
            Loss of the last epoch (0.0 when no epoch ran)
        """
        keys_array = np.asarray(keys, dtype=np.float64).reshape(-1, 1)
        targets_array = np.asarray(targets, dtype=np.float32).reshape(-1, 1)
        dataset_size = keys_array.shape[0]
        if dataset_size == 0:
            raise ValueError("Cannot fit a position model on an empty training set")
        if targets_array.shape[0] != dataset_size:
            raise ValueError(f"Got {dataset_size} keys but {targets_array.shape[0]} targets")

        batch_size = min(batch_size, dataset_size)
        self.scale = float(max(scale, 1.0))
        self.training_size = dataset_size

        inputs = torch.tensor(self.scaler.fit_transform(keys_array), dtype=torch.float32)
        labels = torch.tensor(targets_array, dtype=torch.float32)

        # Huber loss is used for stability, Adam because plain SGD barely converges
        criterion = nn.HuberLoss()
        optimizer = optim.Adam(self.model.parameters(), lr=learning_rate)

        self.model.train()
        loss_value = 0.0
        for epoch in range(max_epochs):
            if cancel_event is not None and cancel_event.is_set():
                raise TrainingCancelled(f"Training cancelled at epoch {epoch}")

            batch = torch.from_numpy(get_random_batch(self._rng, batch_size, dataset_size))
            optimizer.zero_grad()
            outputs = self.model(inputs[batch]) * self.scale
            # Dividing by the scale removes the coupling between learning rate and dataset size
            loss = criterion(outputs, labels[batch]) / self.scale
            loss.backward()
            optimizer.step()

            loss_value = loss.item()
            logger.debug(f"Epoch: {epoch} Loss: {loss_value:.6f}")

        self.model.eval()
        self._freeze()
        self.is_trained = True
        self.last_loss = loss_value
        return loss_value

    def predict_batch(self, keys: Sequence[float]) -> np.ndarray:
        """Predict positions for many keys at once."""
        keys_array = np.asarray(keys, dtype=np.float64).reshape(-1, 1)
        if keys_array.shape[0] == 0:
            return np.empty(0, dtype=np.float64)

        # An unfitted regressor sees raw keys; callers must not trust its output
        if self.is_trained:
            keys_array = self.scaler.transform(keys_array)

        with torch.no_grad():
            outputs = self.model(torch.tensor(keys_array, dtype=torch.float32))
        return outputs.squeeze(1).double().numpy() * self.scale

    def _freeze(self) -> None:
        """Snapshot the fitted scaler and weights for the scalar lookup path."""
        self._key_scale = float(self.scaler.scale_[0])
        self._key_offset = float(self.scaler.min_[0])
        self._layers = [(m.weight.detach().double().numpy().copy(), m.bias.detach().double().numpy().copy())
                        for m in self.model.modules() if isinstance(m, nn.Linear)]

    def predict(self, key: float) -> float:
        """Predict the position of a single key.

        Skips sklearn and torch: a fitted model is never updated again, so the
        frozen scaler parameters and numpy weights give the same answer.
        """
        if not self.is_trained:
            return float(self.predict_batch([key])[0])

        x = np.array([key * self._key_scale + self._key_offset])
        last = len(self._layers) - 1
        for i, (weight, bias) in enumerate(self._layers):
            x = weight @ x + bias
            if i < last:
                x = np.maximum(x, 0.0)
        return float(x[0]) * self.scale
