import logging
import threading
from typing import List, Optional, Sequence

import numpy as np

from position_models import PositionRegressor

from .dataset import OrderedDataset
from .utils import NetworkParameters

logger = logging.getLogger(__name__)


def _derive_seed(seed: Optional[int], offset: int) -> Optional[int]:
    return None if seed is None else seed + offset


class FirstStageRouter:
    """Top-level model estimating a key's global rank.

    Only used to pick the Stage-2 model that owns a key.
    """

    def __init__(self, params: NetworkParameters, seed: Optional[int] = None):
        self.params = params
        self.regressor = PositionRegressor(params.num_neurons, seed=seed)
        self.dataset_size = 0

    @property
    def is_trained(self) -> bool:
        return self.regressor.is_trained

    def train(self, dataset: OrderedDataset, cancel_event: Optional[threading.Event] = None) -> float:
        """Fit rank / |dataset| from key over the full sorted dataset."""
        self.dataset_size = len(dataset)
        if self.dataset_size == 0:
            logger.info("Dataset is empty, skipping first stage")
            return 0.0

        logger.info(f"Training first stage on {self.dataset_size} records")
        ranks = np.arange(self.dataset_size, dtype=np.float64)
        loss = self.regressor.fit(
            dataset.keys,
            ranks,
            scale=self.dataset_size,
            batch_size=self.params.batch_size,
            max_epochs=self.params.max_num_epochs,
            learning_rate=self.params.learning_rate,
            cancel_event=cancel_event
        )
        logger.info(f"First stage final loss: {loss:.6f}")
        return loss

    def predict(self, key: float) -> float:
        """Unclamped rank estimate for a key."""
        return self.regressor.predict(key)

    def predict_batch(self, keys: Sequence[float]) -> np.ndarray:
        return self.regressor.predict_batch(keys)


class SecondStageBank:
    """Fixed-size bank of specialist models, one per bucket of predicted rank.

    Parameters:
    -----------
    params : NetworkParameters
        Shared by every model in the bank
    size : int
        Number of buckets
    seed : Optional[int]
        Base seed; bucket ``s`` uses ``seed + 1 + s``
    previous : Optional[SecondStageBank]
        Bank whose models are kept for buckets that receive no data
    """

    def __init__(self,
                 params: NetworkParameters,
                 size: int,
                 seed: Optional[int] = None,
                 previous: Optional['SecondStageBank'] = None):
        self.params = params
        self.size = size
        self.seed = seed
        if previous is not None and previous.size == size:
            self.models: List[PositionRegressor] = list(previous.models)
        else:
            self.models = [PositionRegressor(params.num_neurons, seed=_derive_seed(seed, 1 + s))
                           for s in range(size)]

        # Per-bucket training metadata, all zero until the bucket trains
        self.bucket_sizes = np.zeros(size, dtype=np.int64)
        self.min_ranks = np.zeros(size, dtype=np.int64)
        self.max_ranks = np.zeros(size, dtype=np.int64)
        self.max_errors = np.zeros(size, dtype=np.int64)

    def route_batch(self, positions: np.ndarray) -> np.ndarray:
        """Vectorized ``route_to_stage`` over Stage-1 estimates."""
        positions = np.nan_to_num(np.asarray(positions, dtype=np.float64), nan=0.0)
        stages = np.floor(np.clip(positions / self.size, 0, self.size - 1))
        return stages.astype(np.int64)

    def assign(self, router: FirstStageRouter, dataset: OrderedDataset) -> List[np.ndarray]:
        """Group dataset ranks by the bucket Stage-1 routes them to."""
        logger.info("Creating per stage dataset")
        if len(dataset) == 0:
            return [np.empty(0, dtype=np.int64) for _ in range(self.size)]

        stages = self.route_batch(router.predict_batch(dataset.keys))
        return [np.flatnonzero(stages == stage) for stage in range(self.size)]

    def train(self,
              dataset: OrderedDataset,
              buckets: List[np.ndarray],
              cancel_event: Optional[threading.Event] = None) -> None:
        """Retrain every non-empty bucket from scratch on its own ranks."""
        if len(dataset) == 0:
            logger.info("Dataset is empty, skipping second stage")
            return

        logger.info("Training second stage")
        for stage, ranks in enumerate(buckets):
            bucket_size = len(ranks)
            if bucket_size == 0:
                logger.warning(f"Dataset for stage {stage} is empty")
                continue

            # Make sure batch size is <= bucket size
            batch_size = min(self.params.batch_size, bucket_size)
            model = PositionRegressor(self.params.num_neurons, seed=_derive_seed(self.seed, 1 + stage))
            bucket_keys = dataset.keys[ranks]
            targets = ranks.astype(np.float64)
            loss = model.fit(
                bucket_keys,
                targets,
                scale=bucket_size,
                batch_size=batch_size,
                max_epochs=self.params.max_num_epochs,
                learning_rate=self.params.learning_rate,
                cancel_event=cancel_event
            )

            errors = np.abs(np.nan_to_num(model.predict_batch(bucket_keys), nan=0.0) - targets)
            max_error = int(np.ceil(np.max(errors)))

            self.models[stage] = model
            self.bucket_sizes[stage] = bucket_size
            self.min_ranks[stage] = int(ranks[0])
            self.max_ranks[stage] = int(ranks[-1])
            self.max_errors[stage] = min(max_error, len(dataset))
            logger.debug(f"Stage: {stage} size: {bucket_size} loss: {loss:.6f} max error: {max_error}")

    def is_degraded(self, stage: int) -> bool:
        """True when the bucket got no data in the last retrain."""
        return self.bucket_sizes[stage] == 0 or not self.models[stage].is_trained

    def predict(self, stage: int, key: float) -> float:
        """Unclamped rank estimate from the bucket's model."""
        return self.models[stage].predict(key)

    def bounded_predict(self, stage: int, key: float) -> float:
        """Rank estimate kept within the ranks the bucket trained on, give or take its error."""
        error = float(self.max_errors[stage])
        low = float(self.min_ranks[stage]) - error
        high = float(self.max_ranks[stage]) + error
        return float(np.clip(np.nan_to_num(self.predict(stage, key), nan=low), low, high))

    def get_stats(self) -> dict:
        return {
            'bucket_sizes': self.bucket_sizes.tolist(),
            'max_errors': self.max_errors.tolist(),
            'empty_buckets': int(np.sum(self.bucket_sizes == 0)),
        }
